#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""XDR Internals: Main!
"""

import fire

from xdrinternals.auth import auth
from xdrinternals.conf import genconf
from xdrinternals.invoke import invoke, timeline
from xdrinternals.xdray import xdray
import xdrinternals


def version():
    """
    Display the version
    """
    print(f"XDR Internals Version {xdrinternals.__version__}")


def main():
    fire.Fire({"auth": auth,
               "conf": genconf,
               "invoke": invoke,
               "timeline": timeline,
               "xdray": xdray,
               "--version": version})

if __name__ == "__main__":
    main()
