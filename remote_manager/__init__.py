# -*- coding: utf-8 -*-
"""Remote Manager host service: HTTP power control for the local machine."""

APP_NAME = "RemoteManager"
APP_VERSION = "1.2.0"
