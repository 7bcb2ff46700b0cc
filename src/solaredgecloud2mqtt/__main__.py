#!/usr/bin/env python

import argparse
from argparse import BooleanOptionalAction
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Optional

from .core.config_schema import validate_config
from .core.constants import DEFAULT_HEALTH_CHECK_INTERVAL, DEFAULT_POLL_INTERVAL
from .core.exceptions import ConfigError, MQTTError, ValidationError
from .core.inverter_accessory import MqttDeviceSink
from .core.logging_config import configure_logging
from .core.mqtt_publisher import MQTTPublisher
from .core.normalizer import NormalizerOptions
from .core.orchestrator import Orchestrator, health_check
from .core.solaredge_client import SolarEdgeClient


daemon_args = None

# Live instances, used by the signal handler
orchestrator: Optional[Orchestrator] = None
mqtt_publisher: Optional[MQTTPublisher] = None


INT_KEYS = ['mqtt_port', 'mqtt_keepalive', 'poll_interval', 'health_check_interval']
BOOL_KEYS = ['mqtt_tls', 'mqtt_tls_no_verify', 'eve_history', 'timestamp', 'verbose']
STR_KEYS = ['mqtt_host', 'mqtt_clientid', 'mqtt_user', 'mqtt_password', 'mqtt_topic',
            'mqtt_tls_version', 'mqtt_verify_mode', 'mqtt_ssl_ca_path',
            'api_base_url', 'log_level', 'log_format']


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog='solaredgecloud2mqtt',
        description='A SolarEdge Monitoring API to MQTT bridge',
        epilog='Have a lot of fun!')

    # MQTT settings
    parser.add_argument('-m', '--mqtt_host', type=str, default='localhost',
                       help='The hostname of the MQTT server. Default is localhost')
    parser.add_argument('--mqtt_port', type=int, default=1883,
                       help='The port of the MQTT server. Default is 1883')
    parser.add_argument('--mqtt_keepalive', type=int, default=30,
                       help='The keep alive interval for the MQTT server connection in seconds. Default is 30')
    parser.add_argument('--mqtt_clientid', type=str, default='solaredgecloud2mqtt',
                       help='The clientid to send to the MQTT server. Default is solaredgecloud2mqtt')
    parser.add_argument('-u', '--mqtt_user', type=str,
                       help='The username for the MQTT server connection.')
    parser.add_argument('-p', '--mqtt_password', type=str,
                       help='The password for the MQTT server connection.')
    parser.add_argument('-t', '--mqtt_topic', type=str, default='solaredge',
                       help='The topic to publish MQTT message. Default is solaredge')
    parser.add_argument('--mqtt_tls', action=BooleanOptionalAction, default=False,
                       help='Use SSL/TLS encryption for MQTT connection.')
    parser.add_argument('--mqtt_tls_version', type=str, default='TLSv1.2',
                       help='The TLS version to use for MQTT. One of TLSv1, TLSv1.1, TLSv1.2. Default is TLSv1.2')
    parser.add_argument('--mqtt_verify_mode', type=str, default='CERT_REQUIRED',
                       help='The SSL certificate verification mode. One of CERT_NONE, CERT_OPTIONAL, CERT_REQUIRED. Default is CERT_REQUIRED')
    parser.add_argument('--mqtt_ssl_ca_path', type=str,
                       help='The SSL certificate authority file to verify the MQTT server.')
    parser.add_argument('--mqtt_tls_no_verify', action=BooleanOptionalAction, default=False,
                       help='Do not verify SSL/TLS constraints like hostname.')

    # SolarEdge settings
    parser.add_argument('-k', '--api_key', type=str, action='append',
                       help='A SolarEdge Monitoring API key. Repeat for several accounts.')
    parser.add_argument('--api_base_url', type=str,
                       help='Override the SolarEdge Monitoring API base URL.')
    parser.add_argument('--poll_interval', type=int, default=DEFAULT_POLL_INTERVAL,
                       help='The polling interval per account in seconds. Default is 600')
    parser.add_argument('--eve_history', action=BooleanOptionalAction, default=True,
                       help='Publish energy readings for Eve history for all inverters.')

    # Monitoring settings
    parser.add_argument('--health_check_interval', type=int, default=DEFAULT_HEALTH_CHECK_INTERVAL,
                       help='Health check interval in seconds. Default is 0 (disabled)')

    # General settings
    parser.add_argument('-c', '--config', type=str, default='/etc/solaredgecloud2mqtt.conf',
                       help='The path to the config file. Default is /etc/solaredgecloud2mqtt.conf')
    parser.add_argument('-z', '--timestamp', default=False, action='store_true',
                       help='Publish timestamps for all topics, e.g. for monitoring purposes.')
    parser.add_argument('-v', '--verbose', default=False, action='store_true',
                       help='Be verbose while running.')
    parser.add_argument('--log-level', type=str, choices=['CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG', 'NOTSET'], default='INFO',
                       help='Logging level (default: INFO). Overridden by --verbose.')
    parser.add_argument('--log-format', type=str, choices=['text', 'json'], default='text',
                       help='Logging format: text or json (default: text).')

    args = parser.parse_args(argv)
    args.devices = {}
    return args


def apply_config(args, data):
    """Overlay values from a parsed JSON config file onto `args`."""
    for key in INT_KEYS:
        if key in data:
            setattr(args, key, int(data[key]))
    for key in BOOL_KEYS:
        if key in data:
            setattr(args, key, str(data[key]).lower() == 'true')
    for key in STR_KEYS:
        if key in data:
            setattr(args, key, str(data[key]))

    # api_keys (list) or api_key (string or list) add to keys given on the command line
    keys = list(args.api_key or [])
    for key in ('api_keys', 'api_key'):
        value = data.get(key)
        if isinstance(value, str):
            keys.append(value)
        elif isinstance(value, list):
            keys.extend(value)
    args.api_key = keys

    if 'devices' in data:
        args.devices = data['devices']
    return args


def parse_config(args):
    if not os.path.isfile(args.config):
        validate_config(args)
        return args

    with open(args.config, "r") as config_file:
        data = json.load(config_file)
    if not isinstance(data, dict):
        raise ConfigError("Config file {} must hold a JSON object".format(args.config))
    apply_config(args, data)
    validate_config(args)
    return args


def publish_to_mqtt(topic, value):
    if mqtt_publisher:
        mqtt_publisher.publish(topic, value)
    else:
        logging.warning(f"No MQTT publisher available for topic {topic}: {value}")


async def health_check_loop(args, client):
    while orchestrator is not None and orchestrator.running:
        try:
            await health_check(mqtt_publisher, client, orchestrator.context, publish_to_mqtt)
            await asyncio.sleep(args.health_check_interval)
        except Exception:
            logging.exception("health_check_loop error")
            await asyncio.sleep(60)


def shutdown(signum, frame):
    logging.info('Shutdown...')
    if orchestrator is not None:
        orchestrator.request_stop()


async def start_bridge(args):
    global orchestrator, mqtt_publisher
    logging.info("Starting SolarEdgeCloud2MQTT bridge")

    mqtt_publisher = MQTTPublisher(
        host=args.mqtt_host,
        port=args.mqtt_port,
        keepalive=args.mqtt_keepalive,
        clientid=args.mqtt_clientid,
        base_topic=args.mqtt_topic,
        enable_timestamp=args.timestamp,
        tls_enabled=args.mqtt_tls,
        tls_version=args.mqtt_tls_version,
        verify_mode_name=args.mqtt_verify_mode,
        ca_path=args.mqtt_ssl_ca_path,
        tls_no_verify=args.mqtt_tls_no_verify,
        username=args.mqtt_user,
        password=args.mqtt_password,
        verbose=args.verbose
    )
    mqtt_publisher.initialize()
    mqtt_publisher.connect()
    mqtt_publisher.start_loop()

    client = SolarEdgeClient(args.api_base_url)
    orchestrator = Orchestrator(
        client,
        MqttDeviceSink(mqtt_publisher),
        args.api_key,
        options=NormalizerOptions(eve_history=args.eve_history, devices=args.devices),
        poll_interval=args.poll_interval,
    )
    logging.info("Configured {} SolarEdge connection(s)".format(len(args.api_key)))

    health_task = None
    try:
        await orchestrator.start()
        if args.health_check_interval > 0:
            logging.info("Health monitoring enabled - check every %s seconds", args.health_check_interval)
            health_task = asyncio.create_task(health_check_loop(args, client))
        while orchestrator.running:
            await asyncio.sleep(1)
    finally:
        if health_task is not None:
            health_task.cancel()
        await orchestrator.shutdown()
        logging.info('Stopping MQTT')
        mqtt_publisher.disconnect()
        mqtt_publisher.stop_loop()
        logging.info('Bye!')


def main(argv=None):
    global daemon_args

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    daemon_args = parse_args(argv)
    configure_logging(daemon_args.log_level, daemon_args.log_format, daemon_args.verbose)
    try:
        parse_config(daemon_args)
    except (ConfigError, ValidationError, ValueError, OSError) as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1
    # Config file may change log settings
    configure_logging(daemon_args.log_level, daemon_args.log_format, daemon_args.verbose)

    try:
        asyncio.run(start_bridge(daemon_args))
    except MQTTError as exc:
        logging.error("MQTT setup failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
