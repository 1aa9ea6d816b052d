"""Desktop Companion: hardware telemetry for Home Assistant.

Collects CPU, memory, disk, network, GPU, battery and thermal readings and
publishes them to Home Assistant over the ``mobile_app`` webhook and MQTT
discovery.

Packages:
    collectors: Hardware probe, sensor registry and collection engine
    core: Configuration, exceptions, webhook and MQTT channels
    monitors: Sensor loop and companion agent
    utils: Platform detection and formatting helpers
"""
