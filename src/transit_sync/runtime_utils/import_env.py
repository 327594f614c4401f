import os
import logging


def load_environment(env_file: str = ".env") -> None:
    """
    Load environment variables from a .env file if it exists. Variables that
    are already set in the environment are left alone.
    """
    try:
        if int(os.environ.get("BOOTSTRAPPED", 0)) == 1:
            return

        env_file = os.path.abspath(env_file)
        logging.info("bootstrapping with env file %s", env_file)

        with open(env_file, "r", encoding="utf8") as reader:
            for line in reader.readlines():
                line = line.strip()
                if line.startswith("#") or line == "":
                    continue
                key, value = line.split("=", maxsplit=1)
                key = key.strip()
                value = value.strip().strip('"')
                if key in os.environ:
                    continue
                # keep secrets out of the log output
                logging.info("setting %s", key)
                os.environ[key] = value

        os.environ["BOOTSTRAPPED"] = "1"

    except FileNotFoundError as fnfe:
        logging.warning("Unable to find .env file %s", fnfe)
    except Exception as exception:
        logging.exception("Error while trying to bootstrap")
        raise exception
