"""
Utility script to view, test, and update Business Central credentials
Usage: python tools/update_erp_credentials.py [credentials_file]

The Fernet key is read from BC_CREDENTIALS_KEY; option 4 generates one.
"""
import sys

from cryptography.fernet import Fernet

from posbridge.core.errors import UpstreamError
from posbridge.erp.business_central.bc_client import BusinessCentralClient
from posbridge.erp.business_central.credentials_handler import (
    KEY_ENV_VAR, PLAINTEXT_FIELDS, load_credentials, save_credentials,
)

CREDS_FILE = 'bc_credentials_encrypted.json'

SECRET_FIELDS = ('client_secret', 'password')


def decrypt_credentials(creds_file):
    """Decrypt and display current credentials"""
    try:
        decrypted = load_credentials(creds_file)
    except FileNotFoundError:
        print(f"Error: {creds_file} not found!")
        return None
    except Exception as e:
        print(f"Error decrypting credentials: {e}")
        return None

    print("\n=== Current Business Central Credentials (Decrypted) ===\n")
    for field, value in decrypted.items():
        # Mask secrets for security
        display_value = '*' * len(value) if field in SECRET_FIELDS else value
        print(f"{field:15} : {display_value}")
    print("\n")
    return decrypted


def test_connection(creds):
    """Fetch a token and list the companies visible to the credentials"""
    client = BusinessCentralClient(creds)
    if not client.is_configured():
        print("✗ Incomplete credentials (tenant_id, company_id and a secret are required)")
        return False

    print("Testing connection to Business Central...")
    print(f"API: {client.base_url}")
    try:
        companies = client.paged_get("companies?$select=id,name")
    except UpstreamError as e:
        print(f"✗ Connection error: {e}")
        return False

    print(f"✓ Authentication successful! {len(companies)} companies visible")
    found = False
    for company in companies:
        marker = "*" if company.get('id') == client.company_id else " "
        found = found or marker == "*"
        print(f" {marker} {company.get('id')}  {company.get('name')}")

    if not found:
        print(f"✗ Company '{client.company_id}' not found!")
    return found


def prompt_credentials():
    print("\n=== Update Business Central Credentials ===\n")
    creds = {
        'tenant_id': input("Tenant ID: ").strip(),
        'company_id': input("Company ID: ").strip(),
        'environment': input("Environment [Production]: ").strip() or 'Production',
        'auth': (input("Auth mode (oauth/basic) [oauth]: ").strip() or 'oauth').lower(),
    }
    if creds['auth'] == 'basic':
        creds['username'] = input("Username: ").strip()
        creds['password'] = input("Password: ").strip()
    else:
        creds['client_id'] = input("Client ID: ").strip()
        creds['client_secret'] = input("Client secret: ").strip()
    return creds


def main():
    """Main menu"""
    creds_file = sys.argv[1] if len(sys.argv) > 1 else CREDS_FILE

    print("\n" + "="*50)
    print("    Business Central Credentials Manager")
    print("="*50)
    print(f"File: {creds_file}")

    while True:
        print("\nOptions:")
        print("  1) View current credentials (decrypted)")
        print("  2) Test connection to Business Central")
        print("  3) Update credentials")
        print(f"  4) Generate a new {KEY_ENV_VAR}")
        print("  5) Exit")

        choice = input("\nSelect option (1-5): ").strip()

        if choice == '1':
            decrypt_credentials(creds_file)

        elif choice == '2':
            creds = decrypt_credentials(creds_file)
            if creds:
                test_connection(creds)

        elif choice == '3':
            creds = prompt_credentials()
            missing = [k for k, v in creds.items() if not v]
            if missing:
                print(f"Error: Missing fields: {', '.join(missing)}")
                continue
            try:
                save_credentials(creds_file, creds)
            except Exception as e:
                print(f"Error encrypting credentials: {e}")
                continue
            print(f"\n✓ Credentials saved to {creds_file}")
            print(f"  Plaintext fields: {', '.join(f for f in PLAINTEXT_FIELDS if f in creds)}")
            print("\nTesting new credentials...")
            test_connection(creds)

        elif choice == '4':
            print(f"\n{KEY_ENV_VAR}={Fernet.generate_key().decode()}")
            print("Store this key in the service environment; existing files need re-encrypting.")

        elif choice == '5':
            print("\nExiting...")
            break

        else:
            print("Invalid option!")


if __name__ == "__main__":
    main()
