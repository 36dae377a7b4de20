import os


def get_data_dir():
    # PICTOVAULT_DATA_DIR wins; otherwise keep data next to the checkout.
    base = os.environ.get("PICTOVAULT_DATA_DIR", "").strip()
    if not base:
        base = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "data")

    os.makedirs(base, exist_ok=True)
    return base


def get_db_path():
    return os.path.join(get_data_dir(), "pictovault.db")

