"""
BIP-32/39/44 key derivation for Cosmos SDK chains.

Implements:
- Derivation path parsing ("m/44'/118'/0'/0/0" -> ordered components)
- BIP-32 secp256k1 master key and child derivation from a seed
- Neutering (private extended key -> public-only extended key)
- Mnemonic -> seed -> key -> bech32 address pipeline
- Fresh 12-word mnemonic generation
"""

from __future__ import annotations

from dataclasses import dataclass

from bip_utils import (
    Bip32Slip10Secp256k1,
    Bip39Languages,
    Bip39MnemonicGenerator,
    Bip39MnemonicValidator,
    Bip39SeedGenerator,
    Bip39WordsNum,
)

from cosmos_address import bech32_address
from cosmos_errors import (
    CouldNotDeriveNeuteredKey,
    DerivationComponentNotANumber,
    DerivationPathMustStartWithM,
    DerivationPathTooShort,
    InvalidMnemonic,
    KeyGenerationFailed,
)

# Well-known path for the Cosmos Hub (coin type 118).
COSMOS_DERIVATION_PATH = "m/44'/118'/0'/0/0"

HARDENED_KEY_START = 0x80000000
MAX_COMPONENT_INDEX = 0xFFFFFFFF

# Extended keys are BIP-32 secp256k1 contexts; public-only ones are "neutered".
ExtendedKey = Bip32Slip10Secp256k1


@dataclass(frozen=True)
class DerivationComponent:
    """A single step of a derivation path."""

    index: int
    hardened: bool = False

    @property
    def child_index(self) -> int:
        """Index passed to BIP-32 child derivation (hardened offset applied)."""
        if self.hardened:
            return self.index + HARDENED_KEY_START
        return self.index

    def __str__(self) -> str:
        return f"{self.index}'" if self.hardened else str(self.index)


# ---------------------------------------------------------------------------
# Path parsing
# ---------------------------------------------------------------------------


def _split_hardened(raw: str) -> tuple[bool, str]:
    """Return (is_hardened, raw without the trailing apostrophe)."""
    if raw.endswith("'"):
        return True, raw[:-1]
    return False, raw


def parse_derivation_path(path: str) -> list[DerivationComponent]:
    """
    Parse a derivation path string into ordered components.

    Whitespace anywhere in the path is ignored. The path must start with
    "m" and contain at least one component; each component is a base-10
    integer that fits in 32 bits, optionally suffixed with "'" (hardened).
    """
    path = "".join(path.split())

    segments = path.split("/")
    if len(segments) <= 1:
        raise DerivationPathTooShort()

    if segments[0] != "m":
        raise DerivationPathMustStartWithM()

    components: list[DerivationComponent] = []
    for raw in segments[1:]:
        hardened, number = _split_hardened(raw)

        if not number:
            raise DerivationComponentNotANumber(number, ValueError("empty component"))
        if not (number.isascii() and number.isdigit()):
            raise DerivationComponentNotANumber(
                number, ValueError(f"invalid syntax: {number!r}")
            )
        index = int(number)
        if index > MAX_COMPONENT_INDEX:
            raise DerivationComponentNotANumber(
                number, ValueError(f"value out of range: {number!r}")
            )

        components.append(DerivationComponent(index=index, hardened=hardened))

    return components


def format_derivation_path(components: list[DerivationComponent]) -> str:
    """Render components back into "m/..." form."""
    return "/".join(["m"] + [str(c) for c in components])


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------


def derive_path(seed: bytes, path: str) -> ExtendedKey:
    """
    Derive the leaf extended private key for path from a BIP-39 seed.

    Path errors propagate unchanged; any failure while building the master
    key or a child key is reported as KeyGenerationFailed.
    """
    try:
        master = Bip32Slip10Secp256k1.FromSeed(seed)
    except Exception as exc:
        raise KeyGenerationFailed(exc) from exc

    components = parse_derivation_path(path)

    key = master
    for component in components:
        try:
            key = key.ChildKey(component.child_index)
        except Exception as exc:
            raise KeyGenerationFailed(exc) from exc

    return key


def neuter(key: ExtendedKey) -> ExtendedKey:
    """
    Return the public-only counterpart of key.

    The result is rebuilt from the serialized extended public key so it
    holds no reference to the private material.
    """
    try:
        return Bip32Slip10Secp256k1.FromExtendedKey(key.PublicKey().ToExtended())
    except Exception as exc:
        raise CouldNotDeriveNeuteredKey(exc) from exc


def compressed_public_key(key: ExtendedKey) -> bytes:
    """33-byte SEC1 compressed public key of an extended key."""
    return key.PublicKey().RawCompressed().ToBytes()


def is_valid_mnemonic(mnemonic: str) -> bool:
    if not mnemonic or not mnemonic.strip():
        return False
    return Bip39MnemonicValidator(Bip39Languages.ENGLISH).IsValid(mnemonic)


def mnemonic_to_seed(mnemonic: str) -> bytes:
    """BIP-39 seed for an English mnemonic with an empty passphrase."""
    if not is_valid_mnemonic(mnemonic):
        raise InvalidMnemonic()
    return bytes(Bip39SeedGenerator(mnemonic, Bip39Languages.ENGLISH).Generate(""))


def derive_from_mnemonic(hrp: str, mnemonic: str, path: str) -> tuple[ExtendedKey, str]:
    """
    Derive an HD keypair and its bech32 address from a mnemonic.

    Returns (extended_private_key, address).
    """
    seed = mnemonic_to_seed(mnemonic)
    key = derive_path(seed, path)
    address = bech32_address(compressed_public_key(key), hrp)
    return key, address


def generate_mnemonic() -> str:
    """Generate a fresh 12-word (128-bit entropy) English mnemonic."""
    return Bip39MnemonicGenerator(Bip39Languages.ENGLISH).FromWordsNumber(Bip39WordsNum.WORDS_NUM_12).ToStr()
