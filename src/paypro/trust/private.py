# SPDX-FileCopyrightText: 2024-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from enum import Enum
from os import PathLike
from pathlib import Path
from tempfile import NamedTemporaryFile

from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePrivateKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, Encoding, NoEncryption, PrivateFormat, load_pem_private_key

from .pk import PrivateKey

__all__ = 'KeyType', 'load_private_key', 'save_private_key'


class KeyType(Enum):
    RSA = 'RSA'
    ECDSA = 'ECDSA'

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}.{self.name}'

    def generate(self) -> PrivateKey:
        match self:
            case KeyType.RSA:
                return rsa.generate_private_key(public_exponent=65537, key_size=2048)
            case KeyType.ECDSA:
                return ec.generate_private_key(ec.SECP256R1())


def load_private_key(path: str | PathLike[str], *, password: str | None = None) -> PrivateKey:
    key_data = Path(path).expanduser().read_bytes()
    key = load_pem_private_key(key_data, password=password.encode() if password is not None else None)
    match key:
        case RSAPrivateKey() | EllipticCurvePrivateKey():
            return key
        case _:
            raise TypeError(f'Unsupported key type: {key.__class__.__qualname__!r} (expected RSAPrivateKey | EllipticCurvePrivateKey)')


def save_private_key(key: PrivateKey, path: str | PathLike[str], *, password: str | None = None) -> None:
    key_encryption = BestAvailableEncryption(password.encode()) if password is not None else NoEncryption()
    key_data = key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, key_encryption)
    path = Path(path).expanduser()
    with NamedTemporaryFile(dir=path.parent, delete=False) as tempfile:
        tempfile.write(key_data)
    Path(tempfile.name).replace(path)
    path.chmod(0o600)
