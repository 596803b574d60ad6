# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""Run the API server: ``python -m flowrunner``."""

import uvicorn

from flowrunner.core.config import get_config
from flowrunner.main import create_app


def main():
    config = get_config()
    uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
