"""
Business Central credentials encryption/decryption handler.

This module handles loading and decrypting ERP secrets from the encrypted JSON file.
Uses Fernet symmetric encryption to protect sensitive credentials at rest.
"""

import json
import os
from typing import Dict, Optional
from cryptography.fernet import Fernet

# Environment variable holding the Fernet key for the credentials file
KEY_ENV_VAR = 'BC_CREDENTIALS_KEY'

# Fields stored in plaintext (identifiers, not secrets)
PLAINTEXT_FIELDS = ('tenant_id', 'company_id', 'environment', 'region', 'auth')


def get_cipher(key: Optional[bytes] = None) -> Fernet:
    """
    Build the Fernet cipher for the credentials file.

    Args:
        key: Fernet key (defaults to the BC_CREDENTIALS_KEY environment variable)

    Raises:
        ValueError: If no key is available
    """
    if key is None:
        env_key = os.environ.get(KEY_ENV_VAR, '')
        if not env_key:
            raise ValueError(f"{KEY_ENV_VAR} is not set - cannot decrypt ERP credentials")
        key = env_key.encode()
    return Fernet(key)


def load_credentials(filepath: str, key: Optional[bytes] = None) -> Dict[str, str]:
    """
    Load and decrypt Business Central credentials from encrypted JSON file.

    Args:
        filepath: Path of the encrypted credentials file
        key: Fernet key (defaults to the BC_CREDENTIALS_KEY environment variable)

    Returns:
        dict: Decrypted credentials, any of:
            - client_id / client_secret: OAuth client credentials
            - username / password: Basic auth credentials
            - tenant_id, company_id, environment, region, auth (not encrypted)

    Raises:
        FileNotFoundError: If credentials file not found
        json.JSONDecodeError: If credentials file is invalid JSON
        Exception: If decryption fails
    """
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Credentials file not found: {filepath}")

    # Initialize cipher
    cipher_suite = get_cipher(key)

    # Load encrypted credentials
    with open(filepath, 'r', encoding='utf-8') as file:
        encrypted_credentials = json.load(file)

    # Decrypt credentials
    decrypted_credentials = {}
    for field, value in encrypted_credentials.items():
        if field in PLAINTEXT_FIELDS:
            decrypted_credentials[field] = value
        else:
            decrypted_credentials[field] = cipher_suite.decrypt(value.encode()).decode()

    return decrypted_credentials


def save_credentials(filepath: str, credentials: Dict[str, str], key: Optional[bytes] = None) -> None:
    """
    Encrypt and save Business Central credentials.

    Args:
        filepath: Path of the encrypted credentials file
        credentials: Plain credentials dict
        key: Fernet key (defaults to the BC_CREDENTIALS_KEY environment variable)
    """
    cipher_suite = get_cipher(key)

    encrypted = {}
    for field, value in credentials.items():
        if value is None or value == '':
            continue
        if field in PLAINTEXT_FIELDS:
            encrypted[field] = value
        else:
            encrypted[field] = cipher_suite.encrypt(str(value).encode()).decode()

    with open(filepath, 'w', encoding='utf-8') as file:
        json.dump(encrypted, file, indent=4)
