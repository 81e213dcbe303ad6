#!/usr/bin/env python3
"""
This is a Plugin/NodeServer for Polyglot v3 written in Python3
modified from v3 template version by (Bob Paauwe) bpaauwe@yahoo.com
It bridges a relay-board garage door controller on MQTT to EISY/Polisy

garage-poly-pg3x NodeServer/Plugin for EISY/Polisy

(c) 2025 Stephen Jenkins
"""

# std libraries
import sys

# external libraries
import udi_interface

# local imports
from nodes import Controller

LOGGER = udi_interface.LOGGER

VERSION = "0.1.0"

"""
0.1.0
DONE single garage door node driven by MQTT telemetry
DONE legacy digit topic & JSON relay board topic
DONE reconciler thread, one motor pulse per mismatching target
DONE retained presence announcement with offline will
"""

if __name__ == "__main__":
    polyglot = None
    try:
        """
        Instantiates the Interface to Polyglot.
        """
        polyglot = udi_interface.Interface([])
        """
        Starts MQTT and connects to Polyglot.
        """
        polyglot.start(VERSION)
        polyglot.updateProfile()

        """
        Creates the Controller Node and passes in the Interface, the node's
        parent address, node's address, and name/title
        """
        control = Controller(polyglot, "gdctrl", "gdctrl", "Garage")

        """
        Sits around and does nothing forever, keeping your program running.
        """
        polyglot.runForever()
    except (KeyboardInterrupt, SystemExit):
        LOGGER.warning("Received interrupt or exit...")
        """
        Catch SIGTERM or Control-C and exit cleanly.
        """
        if polyglot is not None:
            polyglot.stop()
    except Exception as err:
        LOGGER.error("Exception: {0}".format(err), exc_info=True)
    sys.exit(0)
