"""
Camera event clients.

onvif_client is imported on demand (it pulls in onvif-zeep-async and zeep):

    from onvif2mqtt.devices.onvif_client import OnvifDeviceClient
"""
