"""Garage door MQTT Polyglot NodeServer for EISY/Polisy.

This module provides the Controller class for the garage-poly-pg3x NodeServer,
which bridges a relay-board garage door controller on MQTT to the
EISY/Polisy home automation system through the Polyglot interface.

The Controller owns the configuration, the MQTT connection and the bridge
core (state store, telemetry decoder, motor actuator and reconciler), and
routes MQTT telemetry to the reconciler.

Author: Stephen Jenkins
Copyright: (C) 2025 Stephen Jenkins
"""

# std libraries
import yaml, logging
from threading import Event, Condition
from typing import Optional, Any

# external libraries
from udi_interface import Node, LOGGER, Custom, LOG_HANDLER
from paho.mqtt.client import Client
from paho.mqtt.enums import CallbackAPIVersion

# personal libraries
from garagedoor import (
    ConfigError, DecodeError, TransportError,
    DoorState, StateStore, TelemetryDecoder, MotorActuator,
    Reconciler, TelemetryUpdate,
)

# Nodes
from nodes.GarageDoor import GarageDoor

DEFAULT_CONFIG = {
    'mqtt_server': 'localhost',
    'mqtt_port': 1884,
    'mqtt_user': 'admin',
    'mqtt_password': 'admin',
    'legacy_topic': 'garage/door/#',
    'sensor_topic': 'garage/sensors',
    'cmd_topic': 'garage/motor',
    'presence_topic': 'garage/bridge/presence',
    'pulse_token': 'G',
    'open_field': 'input2',
    'open_when_active': True,
    'door_name': 'Garage Door',
}

DOOR_ADDRESS = 'garage'
PRESENCE_ONLINE = 'online'
PRESENCE_OFFLINE = 'offline'
SUBSCRIBE_QOS = 1
PRESENCE_QOS = 1

STATUS_STOPPED = 0
STATUS_RUNNING = 1
STATUS_FAILED = 2


class Controller(Node):
    """Controller class for the garage door NodeServer.

    Attributes:
        id (str): Unique identifier for the controller node ('gdctrl').
        hb (int): Heartbeat counter for monitoring controller status.
        n_queue (list): Queue for tracking node creation completion.
        queue_condition (Condition): Threading condition for node queue synchronization.
        ready_event (Event): Event signaling when controller is ready for operation.
        all_handlers_st_event (Event): Event signaling when all handlers are complete.
        discovery_in (bool): Flag indicating if discovery is currently in progress.
        general (dict): General configuration from the optional devfile.
        config (dict): Resolved configuration.
        store (StateStore): Door state shared by the node and reconciler.
        decoder (TelemetryDecoder): Telemetry decoder for subscribed topics.
        actuator (MotorActuator): Motor pulse sender.
        reconciler (Reconciler): Decision loop for target/telemetry events.
        mqttc (Client): MQTT client instance for communication.
        presence_topic (str): Presence/will topic, fixed when the bridge is built.
    """
    id = 'gdctrl'

    def __init__(self, poly, primary, address, name):
        """Initialize the Controller node.

        Args:
            poly: Polyglot interface instance for communication with EISY/Polisy.
            primary: Primary node address (typically the controller itself).
            address: Unique address for this controller node.
            name: Human-readable name for the controller node.
        """
        super().__init__(poly, primary, address, name)

        # importand flags, timers, vars
        self.hb = 0 # heartbeat

        # storage arrays & conditions
        self.n_queue = []
        self.queue_condition = Condition()

        # Events & in
        self.ready_event = Event()
        self.all_handlers_st_event = Event()
        self.discovery_in = False

        # startup completion flags
        self.handler_params_st = None
        self.handler_data_st = None

        self.general = {}
        self.config = {}

        # bridge core, built once configuration is valid
        self.store: Optional[StateStore] = None
        self.decoder: Optional[TelemetryDecoder] = None
        self.actuator: Optional[MotorActuator] = None
        self.reconciler: Optional[Reconciler] = None
        self.mqttc: Optional[Client] = None
        self.presence_topic: Optional[str] = None

        # Create data storage classes
        self.Notices         = Custom(poly, 'notices')
        self.Parameters      = Custom(poly, 'customparams')
        self.Data            = Custom(poly, 'customdata')

        # Subscribe to various events from the Interface class.
        self.poly.subscribe(self.poly.START,             self.start, address)
        self.poly.subscribe(self.poly.POLL,              self.poll)
        self.poly.subscribe(self.poly.LOGLEVEL,          self.handleLevelChange)
        self.poly.subscribe(self.poly.CUSTOMPARAMS,      self.parameterHandler)
        self.poly.subscribe(self.poly.CUSTOMDATA,        self.dataHandler)
        self.poly.subscribe(self.poly.STOP,              self.stop)
        self.poly.subscribe(self.poly.DISCOVER,          self.discover_cmd)
        self.poly.subscribe(self.poly.ADDNODEDONE,       self.node_queue)

        # Tell the interface we have subscribed to all the events we need.
        # Once we call ready(), the interface will start publishing data.
        self.poly.ready()

        # Tell the interface we exist.
        self.poly.addNode(self, conn_status='ST')


    def start(self):
        """Initialize and start the NodeServer.

        Called by the Polyglot handler during startup. Waits for the
        parameter handlers, loads configuration, builds the bridge core,
        creates the door node and connects to MQTT.
        """
        LOGGER.info(f"Garage Door PG3 NodeServer {self.poly.serverdata['version']}")
        self.Notices.clear()
        self.Notices['hello'] = 'Start-up'
        self.setDriver('ST', STATUS_RUNNING, report = True, force = True)

        # Send the profile files to the ISY if neccessary or version changed.
        self.poly.updateProfile()

        # Send the default custom parameters documentation file to Polyglot
        self.poly.setCustomParamsDoc()

        # Initializing a heartbeat
        self.heartbeat()

        # Wait for all handlers to finish
        LOGGER.warning(f'Waiting for all handlers to complete...')
        self.Notices['waiting'] = 'Waiting on valid configuration'
        self.all_handlers_st_event.wait(timeout=60)
        if not self.all_handlers_st_event.is_set():
            # start-up failed
            LOGGER.error("Timed out waiting for handlers to startup")
            self.setDriver('ST', STATUS_FAILED)
            self.Notices['error'] = 'Error start-up timeout.  Check config & restart'
            return

        if not self.discover_cmd():
            LOGGER.error(f'First discovery failed!!! exit {self.name}')
            self.Notices['error'] = 'Error configuration.  Check config & restart'
            self.setDriver('ST', STATUS_FAILED)
            return

        if not self._mqtt_start():
            LOGGER.error(f'MQTT connection failed!!! exit {self.name}')
            self.Notices['error'] = 'Error MQTT connection.  Check config & restart'
            self.setDriver('ST', STATUS_FAILED)
            return

        self.reconciler.start()

        self.Notices.delete('waiting')
        LOGGER.info('Started Garage Door NodeServer v%s', self.poly.serverdata)
        self.query(command = f"{self.name}: STARTUP")

        # signal to the nodes, its ok to start
        self.ready_event.set()

        # clear inital start-up message
        if self.Notices.get('hello'):
            self.Notices.delete('hello')

        LOGGER.info(f'exit {self.name}')


    def _mqtt_start(self):
        """Initialize and connect to the MQTT broker.

        Registers a retained 'offline' will on the presence topic, connects
        and starts the paho network loop.

        Returns:
            bool: True if connection successful, False otherwise.
        """
        self.mqttc = Client(CallbackAPIVersion.VERSION1)
        self.mqttc.on_connect = self._on_connect
        self.mqttc.on_disconnect = self._on_disconnect  # type: ignore
        self.mqttc.on_message = self._on_message
        self.mqttc.username_pw_set(self.config['mqtt_user'], self.config['mqtt_password'])
        self.mqttc.will_set(self.presence_topic, PRESENCE_OFFLINE,
                            qos=PRESENCE_QOS, retain=True)

        try:
            self.mqttc.connect(self.config['mqtt_server'], self.config['mqtt_port'], keepalive=10)
            self.mqttc.loop_start()
        except (OSError, ValueError) as ex:
            LOGGER.error(f"Error connecting to MQTT broker: {ex}")
            self.Notices['mqtt'] = 'Error on user MQTT connection'
            return False

        LOGGER.info("Start Done...")
        return True


    def node_queue(self, data):
        """Handle node creation completion notification.

        Since the addNode() API call is asynchronous and returns before the
        node is fully created, node_queue() and wait_for_node_done() let the
        controller wait until the node is ready.

        Args:
            data (dict): Event data containing the node address.
        """
        address = data.get('address')
        if address:
            with self.queue_condition:
                self.n_queue.append(address)
                self.queue_condition.notify()

    def wait_for_node_done(self):
        with self.queue_condition:
            while not self.n_queue:
                self.queue_condition.wait(timeout = 0.2)
            self.n_queue.pop()


    def dataHandler(self, data):
        """Handle custom data loading from Polyglot."""
        LOGGER.debug(f'enter: Loading data {data}')
        if data is None:
            LOGGER.warning("No custom data")
        else:
            self.Data.load(data)
        self.handler_data_st = True
        self.check_handlers()


    def parameterHandler(self, params):
        """Handle custom parameters from Polyglot dashboard.

        Called via the CUSTOMPARAMS event when the user enters or updates
        custom parameters through the Polyglot dashboard.

        Args:
            params: Custom parameters from Polyglot interface.
        """
        LOGGER.info('parmHandler: Loading parameters now')
        self.Parameters.load(params)
        self.handler_params_st = True
        self.check_handlers()
        LOGGER.info('parmHandler Done...')


    def check_handlers(self):
        if self.handler_params_st and self.handler_data_st:
            self.all_handlers_st_event.set()


    def checkParams(self):
        """Load and validate configuration parameters.

        Precedence is Polyglot parameters, then the 'general' section of the
        optional YAML devfile, then DEFAULT_CONFIG.

        Returns:
            bool: True if configuration loaded successfully, False otherwise.
        """
        self.general = {}
        if self.Parameters.get("devfile"):
            if not self._load_devfile_config():
                return False
        try:
            self.config = self._resolve_config()
        except ConfigError as ex:
            LOGGER.error(f"checkParams: {ex}")
            self.Notices['config'] = f'Configuration error: {ex}'
            return False
        LOGGER.info(f"config = { {k: v for k, v in self.config.items() if k != 'mqtt_password'} }")
        return True


    def _load_devfile_config(self):
        """Load general configuration from a YAML file.

        The file holds a 'general' list of single-key mappings which is
        flattened into self.general.

        Returns:
            bool: True if configuration loaded successfully, False otherwise.
        """
        devfile_path = self.Parameters["devfile"]
        if not devfile_path or not isinstance(devfile_path, str):
            LOGGER.error("Invalid devfile path provided")
            return False

        try:
            with open(devfile_path, 'r', encoding='utf-8') as file:
                dev_yaml = yaml.safe_load(file)
        except (OSError, yaml.YAMLError) as ex:
            error_type = "open" if isinstance(ex, OSError) else "parse"
            LOGGER.error(f"Failed to {error_type} {devfile_path}: {ex}")
            return False

        if not isinstance(dev_yaml, dict) or "general" not in dev_yaml:
            LOGGER.error(f"Configuration file {devfile_path} is missing general section")
            return False
        general = dev_yaml.get("general") or []
        LOGGER.info(f"general = {general}")
        self.general = {k: v for d in general for k, v in d.items()}
        return True


    def _resolve_config(self) -> dict:
        """Resolve each configuration key through the fallback hierarchy.

        Raises:
            ConfigError: a value is present but has the wrong type.
        """
        config = {}
        for key, default in DEFAULT_CONFIG.items():
            candidates = (self.Parameters.get(key), self.general.get(key), default)
            if isinstance(default, bool):
                value = self._get_bool(*candidates)
            elif isinstance(default, int):
                value = self._get_int(*candidates)
            else:
                value = self._get_str(*candidates)
            if value is None:
                raise ConfigError(f"Invalid value for {key}: {candidates[0] or candidates[1]!r}")
            config[key] = value
        if not 0 < config['mqtt_port'] < 65536:
            raise ConfigError(f"mqtt_port out of range: {config['mqtt_port']}")
        return config


    def _get_str(*args: Optional[Any]) -> Optional[str]:
        """Get the first string value from a list of arguments."""
        for val in args:
            if isinstance(val, str):
                return val
        return None

    def _get_int(*args: Optional[Any]) -> Optional[int]:
        """Get the first integer value, or numeric string, from a list of arguments."""
        for val in args:
            if isinstance(val, int) and not isinstance(val, bool):
                return val
            if isinstance(val, str) and val.isdigit():
                return int(val)
        return None

    def _get_bool(*args: Optional[Any]) -> Optional[bool]:
        """Get the first boolean value, or 'true'/'false' string, from a list of arguments."""
        for val in args:
            if isinstance(val, bool):
                return val
            if isinstance(val, str) and val.strip().lower() in ('true', 'false'):
                return val.strip().lower() == 'true'
        return None


    def handleLevelChange(self, level):
        """Handle log level changes from Polyglot.

        Args:
            level (dict): Dictionary containing the new log level information.
        """
        LOGGER.info(f'enter: level={level}')
        if level['level'] < 10:
            LOGGER.info("Setting basic config to DEBUG...")
            LOG_HANDLER.set_basic_config(True,logging.DEBUG)
        else:
            LOGGER.info("Setting basic config to WARNING...")
            LOG_HANDLER.set_basic_config(True,logging.WARNING)
        LOGGER.info(f'exit: level={level}')


    def poll(self, flag):
        """Handle polling events from Polyglot; shortPoll sends the heartbeat."""
        # no updates until node is through start-up
        if not self.ready_event.is_set():
            LOGGER.error(f"Node not ready yet, exiting")
            return

        if 'shortPoll' in flag:
            LOGGER.debug('shortPoll (controller)')
            self.heartbeat()


    def query(self, command=None):
        """Query all nodes, causing them to report their drivers to the ISY."""
        LOGGER.info(f"Enter {command}")
        nodes = self.poly.getNodes()
        for node in nodes:
            nodes[node].reportDrivers()
        LOGGER.debug(f"Exit")


    def discover_cmd(self, command=None):
        """Load configuration, build the bridge core and create the door node.

        Called both during start-up and on a DISCOVER command from the ISY.

        Returns:
            bool: True if discovery completed successfully, False otherwise.
        """
        LOGGER.info(command)
        success = False
        if self.discovery_in:
            LOGGER.info('Discover already running.')
            return success

        self.discovery_in = True
        LOGGER.info("In Discovery...")

        if self.checkParams() and self._discover():
            success = True
            LOGGER.info("Discovery Success")
        else:
            LOGGER.error("Discovery Failure")
        self.discovery_in = False
        return success


    def _discover(self):
        """Build the bridge core once and add the door node if missing.

        Returns:
            bool: True if discovery completed successfully, False otherwise.
        """
        try:
            if self.reconciler is None:
                self._build_bridge()
            if DOOR_ADDRESS not in self.poly.getNodes():
                LOGGER.info(f"Adding door {self.config['door_name']}")
                self.poly.addNode(GarageDoor(self.poly, self.address, DOOR_ADDRESS,
                                             self.config['door_name'], self.store,
                                             self.reconciler, self.config['open_field']))
                self.wait_for_node_done()
        except ConfigError as ex:
            LOGGER.error(f'Discovery Failure: {ex}')
            self.Notices['config'] = f'Configuration error: {ex}'
            return False
        LOGGER.info("Discovery complete.")
        return True


    def _build_bridge(self):
        """Create the store, decoder, actuator and reconciler from config.

        Raises:
            ConfigError: invalid telemetry configuration.
        """
        self.decoder = TelemetryDecoder(self.config['legacy_topic'],
                                        self.config['sensor_topic'],
                                        self.config['open_field'],
                                        self.config['open_when_active'])
        self.store = StateStore()
        self.actuator = MotorActuator(self.mqtt_pub, self.config['cmd_topic'],
                                      self.config['pulse_token'])
        self.reconciler = Reconciler(self.store, self.actuator,
                                     self._push_current, self._push_target)
        # fixed with the bridge, the will is registered against it
        self.presence_topic = self.config['presence_topic']


    def _push_current(self, state: DoorState):
        node = self.poly.getNode(DOOR_ADDRESS)
        if node is None:
            LOGGER.warning(f"No door node to push {state.name}")
            return
        node.push_current_state(state)


    def _push_target(self, state: DoorState):
        node = self.poly.getNode(DOOR_ADDRESS)
        if node is None:
            LOGGER.warning(f"No door node to push target {state.name}")
            return
        node.push_target_state(state)


    def _on_connect(self, _mqttc, _userdata, _flags, rc):
        """Handle MQTT connection events.

        On success subscribes to the telemetry topics and announces presence.

        Args:
            rc (int): Return code indicating connection result (0 = success).
        """
        if rc == 0:
            LOGGER.info(f"MQTT Connected")
            self.setDriver('GV0', 1)
            self.mqtt_subscribe()
            self.announce(PRESENCE_ONLINE)
        else:
            LOGGER.error(f"MQTT Connect failed with rc:{rc}")


    def _on_disconnect(self, _mqttc, _userdata, rc):
        """Handle MQTT disconnection events, re-connecting if unexpected."""
        self.setDriver('GV0', 0)
        if rc != 0:
            LOGGER.warning("MQTT disconnected, trying to re-connect")
            try:
                self.mqttc.reconnect()
            except (OSError, ValueError) as ex:
                LOGGER.error(f"Error connecting to MQTT broker {ex}")
        else:
            LOGGER.info("MQTT graceful disconnection")


    def _on_message(self, _mqttc, _userdata, message):
        """Handle incoming MQTT messages.

        Decodes the telemetry and queues it for the reconciler. Malformed
        payloads are logged and dropped.
        """
        if self.discovery_in or self.reconciler is None:
            return

        topic = message.topic
        LOGGER.info(f"Received message from {topic}: {message.payload}")

        try:
            reading = self.decoder.decode(topic, message.payload)
        except DecodeError as ex:
            LOGGER.error(f"Dropped telemetry from {topic}: {ex}")
            return

        if reading is None:
            LOGGER.debug(f"Ignoring message on unhandled topic: {topic}")
            return

        if reading.sensors is not None:
            node = self.poly.getNode(DOOR_ADDRESS)
            if node is not None:
                node.update_diagnostics(reading.sensors)
        self.reconciler.submit(TelemetryUpdate(reading))


    def mqtt_pub(self, topic, message, qos=0, retain=False):
        """Publish a message to an MQTT topic.

        Raises:
            TransportError: no client, or paho refused the publish.
        """
        LOGGER.debug(f"mqtt_pub: topic: {topic}, message: {message}")
        if self.mqttc is None:
            raise TransportError(f"MQTT not started, cannot publish to {topic}")
        info = self.mqttc.publish(topic, message, qos=qos, retain=retain)
        if info.rc != 0:
            raise TransportError(f"Publish to {topic} failed with rc:{info.rc}")


    def announce(self, presence):
        """Publish the retained presence announcement."""
        try:
            self.mqtt_pub(self.presence_topic, presence, qos=PRESENCE_QOS, retain=True)
        except TransportError as ex:
            LOGGER.error(f"Presence announcement failed: {ex}")


    def mqtt_subscribe(self):
        """Subscribe to the telemetry topics.

        Called when the MQTT client connects or reconnects.
        """
        LOGGER.info("MQTT subscribing...")
        results = []
        for stopic in self.decoder.topics:
            results.append((stopic, tuple(self.mqttc.subscribe(stopic, qos=SUBSCRIBE_QOS))))

        for (topic, (result, mid)) in results:
            if result == 0:
                LOGGER.info(f"Subscribed to {topic} MID: {mid}, res: {result}")
            else:
                LOGGER.error(f"Failed to subscribe {topic} MID: {mid}, res: {result}")
        LOGGER.info("Subscriptions Done")


    def delete(self, command=None):
        """Handle NodeServer deletion."""
        LOGGER.info(command)
        self.setDriver('ST', STATUS_STOPPED, report = True, force = True)
        LOGGER.info('bye bye ... deleted.')


    def stop(self, command=None):
        """Handle NodeServer shutdown.

        Stops the reconciler, withdraws presence and disconnects MQTT.
        """
        LOGGER.info(command)
        self.setDriver('ST', STATUS_STOPPED, report = True, force = True)
        self.Notices.clear()
        if self.reconciler:
            self.reconciler.stop()
        if self.mqttc:
            self.announce(PRESENCE_OFFLINE)
            self.mqttc.loop_stop()
            self.mqttc.disconnect()
        LOGGER.info('NodeServer stopped.')


    def heartbeat(self):
        """Alternately send DON and DOF to the ISY so programs can monitor the plugin."""
        LOGGER.debug(f'heartbeat: hb={self.hb}')
        command = "DOF" if self.hb else "DON"
        self.reportCmd(command, 2)
        self.hb = not self.hb
        LOGGER.debug("Exit")


    # Status that this node has. Should match the 'sts' section
    # of the nodedef file.
    drivers = [
        {'driver': 'ST', 'value': STATUS_RUNNING, 'uom': 25, 'name': "Controller Status"},
        {'driver': 'GV0', 'value': 0, 'uom': 2, 'name': "MQTT Connected"},
    ]

    # Commands that this node can handle.  Should match the
    # 'accepts' section of the nodedef file.
    commands = {
        'DISCOVER': discover_cmd,
        'QUERY': query,
    }
