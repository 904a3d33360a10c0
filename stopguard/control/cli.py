#!/usr/bin/env python3
"""
CLI para enviar comandos MQTT al engine
=======================================

Uso:
    python -m stopguard.control.cli start_drive --user-id u-1 --family-id fam-1
    python -m stopguard.control.cli end_drive
    python -m stopguard.control.cli status
    python -m stopguard.control.cli summary
    python -m stopguard.control.cli stats
    python -m stopguard.control.cli sync
    python -m stopguard.control.cli stop
"""
from typing import Any, Dict, Optional
import argparse
import json
import sys

import paho.mqtt.client as mqtt

COMMANDS = ["start_drive", "end_drive", "status", "summary", "stats", "sync", "stop"]


def build_command(
    command: str,
    user_id: Optional[str] = None,
    family_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Arma el payload JSON del comando."""
    message: Dict[str, Any] = {"command": command}
    if command == "start_drive":
        if not user_id:
            raise ValueError("start_drive requires --user-id")
        message["user_id"] = user_id
        if family_id:
            message["family_id"] = family_id
    return message


def send_command(broker: str, port: int, topic: str, message: Dict[str, Any]) -> bool:
    """Envía un comando MQTT al engine"""
    client = mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id="stopguard_control_cli",
        protocol=mqtt.MQTTv5,
    )

    print(f"🔌 Conectando a {broker}:{port}...")
    try:
        client.connect(broker, port, keepalive=60)
    except Exception as e:
        print(f"❌ Error conectando: {e}")
        return False

    client.loop_start()
    print(f"📤 Enviando comando: {message['command']}")
    result = client.publish(topic, json.dumps(message), qos=1)
    result.wait_for_publish(timeout=5.0)

    success = result.rc == mqtt.MQTT_ERR_SUCCESS
    if success:
        print("✅ Comando enviado exitosamente")
    else:
        print(f"❌ Error enviando comando: {result.rc}")

    client.loop_stop()
    client.disconnect()
    return success


def main():
    parser = argparse.ArgumentParser(
        description="CLI para controlar stopguard vía MQTT"
    )
    parser.add_argument("command", choices=COMMANDS, help="Comando a enviar")
    parser.add_argument("--user-id", help="Usuario del drive (start_drive)")
    parser.add_argument("--family-id", help="Familia del usuario (start_drive, opcional)")
    parser.add_argument(
        "--broker",
        default="localhost",
        help="MQTT broker host (default: localhost)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=1883,
        help="MQTT broker port (default: 1883)"
    )
    parser.add_argument(
        "--topic",
        default="stopguard/control/commands",
        help="MQTT topic (default: stopguard/control/commands)"
    )

    args = parser.parse_args()

    try:
        message = build_command(args.command, args.user_id, args.family_id)
    except ValueError as e:
        parser.error(str(e))

    success = send_command(args.broker, args.port, args.topic, message)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
