"""
CLI entry point for onvif2mqtt
"""

import os
import sys

import click

from onvif2mqtt.logging_utils import setup_structured_logging

# Configure structured logging
# Use JSON format for production, human-readable for development
JSON_LOGS = os.getenv("JSON_LOGS", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

setup_structured_logging(
    level=LOG_LEVEL,
    json_format=JSON_LOGS,
    output_file=os.getenv("LOG_FILE"),
)

CONFIG_ENV_VAR = "ONVIF2MQTT_CONFIG"


def _load_config(config_path):
    from onvif2mqtt.bridge.config import BridgeConfig, ConfigValidationError

    try:
        return BridgeConfig.from_yaml(config_path)
    except (ConfigValidationError, OSError) as e:
        raise click.ClickException(f"Invalid configuration {config_path}: {e}")


@click.group()
def main():
    """onvif2mqtt - ONVIF camera events as MQTT sensors"""
    pass


@main.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    envvar=CONFIG_ENV_VAR,
    required=True,
    help=f"YAML configuration file (default: ${CONFIG_ENV_VAR})",
)
@click.option(
    "--json-logs",
    is_flag=True,
    default=False,
    help="Output logs in JSON format for log aggregation (Elasticsearch, Loki, etc.)",
)
@click.option("--log-level", default=None, help="Log level (default: $LOG_LEVEL or INFO)")
@click.option(
    "--no-watch",
    is_flag=True,
    default=False,
    help="Do not rebuild subscriptions when the configuration file changes",
)
def run(config_path, json_logs, log_level, no_watch):
    """Run the bridge until SIGINT/SIGTERM"""
    from onvif2mqtt.bridge import Bridge, MqttPublisher, PublisherConnectionError
    from onvif2mqtt.devices.onvif_client import OnvifDeviceClient

    # Reconfigure logging based on flags
    if json_logs or log_level:
        setup_structured_logging(level=log_level or LOG_LEVEL, json_format=json_logs or JSON_LOGS)

    config = _load_config(config_path)

    bridge = Bridge(
        config,
        MqttPublisher(config.mqtt),
        OnvifDeviceClient(),
        config_path=None if no_watch else config_path,
    )

    try:
        report = bridge.start()
    except PublisherConnectionError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    click.echo(f"📡 Broker: {config.mqtt.host}:{config.mqtt.port} (base topic: {config.mqtt.base_topic})")
    click.echo(f"🎥 Devices: {', '.join(report.subscribed) or '-'}")
    for name, error in report.failed.items():
        click.echo(f"⚠️  {name}: {error}", err=True)
    click.echo("⌨️  Press Ctrl+C to exit")

    bridge.join()


@main.command("check-config")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    envvar=CONFIG_ENV_VAR,
    required=True,
    help=f"YAML configuration file (default: ${CONFIG_ENV_VAR})",
)
def check_config(config_path):
    """Validate a configuration file and print a summary"""
    config = _load_config(config_path)

    click.echo(f"✅ {config_path} is valid")
    click.echo(f"MQTT: {config.mqtt.host}:{config.mqtt.port} (base topic: {config.mqtt.base_topic}, qos: {config.mqtt.qos})")
    click.echo(f"Debounce: {config.debounce_seconds}s")
    click.echo(f"Devices ({len(config.devices)}):")
    for device in config.devices:
        click.echo(f"   {device.name}: {device.hostname}:{device.port}")
    click.echo(f"Templates ({len(config.templates)}):")
    for template in config.templates:
        retained = " (retained)" if template.retain else ""
        click.echo(f"   {template.subtopic} -> {template.template}{retained}")


@main.command()
@click.argument("topic")
def classify(topic):
    """Print the event kind an ONVIF topic maps to"""
    from onvif2mqtt.events import classify as classify_topic

    kind = classify_topic(topic)
    if kind is None:
        click.echo("unclassified")
        sys.exit(1)
    click.echo(kind.value)


if __name__ == "__main__":
    main()
