"""Run the bridge with uvicorn: ``python -m cliproxy``."""

import uvicorn

from .main import SERVER_HOST, SERVER_PORT, app


def main() -> None:
    uvicorn.run(app, host=SERVER_HOST, port=SERVER_PORT)


if __name__ == "__main__":
    main()
