"""Command line interface for testing configuration loading"""
from . import settings_conf
from pathlib import Path

SECRET_KEYS = {'payment_api_key', 'shipment_api_token', 'jwt_secret', 'admin_token'}

def main():
    """Display loaded configuration"""
    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings_conf.items():
        if key in SECRET_KEYS and value:
            value = '********'
        print(f"{key}: {value}")

    # Save example configuration file
    examples_dir = Path("examples")
    examples_dir.mkdir(exist_ok=True)

    with open(examples_dir / "settings.conf.example", "w") as f:
        f.write("""[DEFAULT]
# PostgreSQL connection URL
db_url = postgresql://postgres@localhost:5432/market?sslmode=disable

# Default gateway endpoints (POST /initialize overrides them at runtime)
payment_service_url = http://localhost:5555
shipment_service_url = http://localhost:7000

# Gateway credentials
payment_shop_id = 11
payment_api_key =
shipment_api_token =

# Seconds a gateway call may take while row locks are held
gateway_timeout = 5

# Seconds a seller must wait between two bumps
bump_cooldown_seconds = 3

# Secret for session tokens; random per process when empty
jwt_secret =

# Bearer token required by POST /initialize; the endpoint is closed when empty
admin_token =
log_level = INFO
""")

if __name__ == "__main__":
    main()
