import time
import random
import string


def generate_unique_id():
    # Use a timestamp as the base for uniqueness
    timestamp = int(time.time() * 1000)  # Milliseconds since epoch
    # Convert timestamp to a base-36 string for shorter length
    timestamp_base36 = base36_encode(timestamp)

    # Add a random string to ensure uniqueness
    random_part = ''.join(random.choices(string.ascii_letters + string.digits, k=6))

    # Combine timestamp and random part
    return f"{timestamp_base36}{random_part}".upper()


def generate_sku(prefix="INV"):
    """Build a SKU such as ``INV-LZ3K9Q2AB4XC1`` from a prefix and a unique id."""
    prefix = (prefix or "").strip().upper()
    unique = generate_unique_id()
    return f"{prefix}-{unique}" if prefix else unique


def base36_encode(num):
    """Encodes a number in base-36."""
    if not isinstance(num, int):
        raise TypeError("number must be an integer")
    if num < 0:
        raise ValueError("number must be non-negative")

    digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    result = ""
    while num > 0:
        num, remainder = divmod(num, 36)
        result = digits[remainder] + result
    return result or "0"


def safe_float(value):
    """Convert a value to float, returning None when it is empty or not numeric."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        return None
    try:
        return float(str(value).replace(",", "").strip())
    except ValueError:
        return None
