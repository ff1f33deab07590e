"""
Script para generar el par de claves RSA (RS256) con el que se firman
los tokens de acceso. Ejecutar una vez antes de iniciar la aplicación:

    python scripts/generate_keys.py [--force] [--dir ./keys]
"""

import argparse
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

DEFAULT_KEYS_DIR = Path(__file__).parent.parent / "keys"


def generate_rsa_keys(
    keys_dir: Path = DEFAULT_KEYS_DIR,
    overwrite: bool = False,
    key_size: int = 2048,
) -> tuple[Path, Path]:
    """
    Escribe `private.pem` (PKCS8) y `public.pem` (SubjectPublicKeyInfo)
    en `keys_dir`. Si ya existen y no se pide sobrescribir, lanza
    FileExistsError.
    """
    keys_dir.mkdir(parents=True, exist_ok=True)
    private_key_path = keys_dir / "private.pem"
    public_key_path = keys_dir / "public.pem"

    if private_key_path.exists() and not overwrite:
        raise FileExistsError(f"Las claves ya existen en {keys_dir}")

    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)

    private_key_path.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    public_key_path.write_bytes(
        private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    return private_key_path, public_key_path


def main() -> None:
    parser = argparse.ArgumentParser(description="Genera las claves RS256 para JWT")
    parser.add_argument("--dir", type=Path, default=DEFAULT_KEYS_DIR, help="Directorio destino")
    parser.add_argument("--force", action="store_true", help="Regenerar si ya existen")
    args = parser.parse_args()

    try:
        private_path, public_path = generate_rsa_keys(args.dir, overwrite=args.force)
    except FileExistsError as exc:
        print(f"⚠️  {exc}. Use --force para regenerarlas.")
        raise SystemExit(1)

    print(f"✅ Clave privada generada: {private_path}")
    print(f"✅ Clave pública generada: {public_path}")
    print("\n📌 Agrega las rutas a tu .env:")
    print("   JWT_ALGORITHM=RS256")
    print(f"   JWT_PRIVATE_KEY_PATH={private_path}")
    print(f"   JWT_PUBLIC_KEY_PATH={public_path}")


if __name__ == "__main__":
    main()
