"""
Field device configuration for the polyfield command line tools.
"""

# Device links (one per role)
DEVICE_CONFIG = {
    "edm": {
        "protocol": "edm-mato",
        "transport": "serial",         # serial | network
        "address": "/dev/ttyUSB0",     # serial path or host
        "port": None,                  # TCP port when transport is network
        "baudrate": 9600,
    },
    "wind": {
        "protocol": "wind-generic",    # wind-generic | wind-gill | wind-lynx | wind-nmea
        "transport": "network",
        "address": "192.168.0.20",
        "port": 5000,
        "baudrate": 9600,
    },
    "scoreboard": {
        "protocol": "scoreboard-daktronics",
        "transport": "network",
        "address": "192.168.0.30",
        "port": 1950,
        "baudrate": 19200,
    },
}

# EDM measurement
EDM_CONFIG = {
    "tolerance_mm": 3.0,               # dual-read slope distance agreement
    "inter_read_delay_s": 0.1,
    "read_timeout_s": 10.0,
    "connect_timeout_s": 5.0,
}

# Wind gauge
WIND_CONFIG = {
    "max_samples": 120,
    "window_s": 5.0,
    "poll_interval_s": 1.0,
    "read_timeout_s": 3.0,
}

# Scoreboard
SCOREBOARD_CONFIG = {
    "message_gap_s": 0.020,
}

# Competition result server
RESULT_SERVER_CONFIG = {
    "base_url": "http://192.168.0.10:3000",
    "cache_path": "polyfield_results_cache.json",
    "flush_interval_s": 120.0,
    "connect_timeout_s": 10.0,
    "read_timeout_s": 15.0,
}

# Reachability probe
PROBE_CONFIG = {
    "timeout_s": 4.0,
}

# Logging
LOGGING_CONFIG = {
    "level": "INFO",
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}
