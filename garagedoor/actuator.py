"""
garage-poly-pg3x NodeServer/Plugin for EISY/Polisy

(C) 2025

Motor actuator: a single fire-and-forget pulse to the motor relay.
The motor toggles direction mechanically, so the pulse carries no parameters.
"""

# std libraries
from typing import Callable

# external libraries
from udi_interface import LOGGER

# personal libraries
from .errors import TransportError

DEFAULT_PULSE_TOKEN = "G"


class MotorActuator:
    """Publishes the pulse token to the motor command topic.

    Args:
        publish: callable(topic, message, qos=, retain=) doing the MQTT send.
        topic: motor command topic.
        token: payload the motor controller reacts to.
    """

    def __init__(self, publish: Callable, topic: str, token: str = DEFAULT_PULSE_TOKEN):
        self.publish = publish
        self.topic = topic
        self.token = token

    def pulse(self) -> None:
        LOGGER.info(f"pulse: topic: {self.topic}, token: {self.token}")
        try:
            self.publish(self.topic, self.token, qos=0, retain=False)
        except (TransportError, OSError, ValueError) as ex:
            # open loop, nothing to retry against
            LOGGER.error(f"pulse publish failed on {self.topic}: {ex}")
