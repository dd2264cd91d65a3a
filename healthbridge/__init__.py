"""Poll Omron BLE health devices and forward measurements to InfluxDB."""
