import os


def get_data_dir():
    # PROMPTDECK_DATA_DIR wins; otherwise keep data next to the working directory.
    base = os.environ.get("PROMPTDECK_DATA_DIR") or os.path.join(os.getcwd(), "data")
    os.makedirs(base, exist_ok=True)
    return base


def get_db_path():
    explicit = os.environ.get("PROMPTDECK_DB_PATH")
    if explicit:
        return explicit
    return os.path.join(get_data_dir(), "database.sqlite")
