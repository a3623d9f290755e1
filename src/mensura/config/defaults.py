"""Default configuration values for Mensura.

Configuration is organized into groups. Each group has a display label
and is stored as one section of the JSON config file.
"""

DEFAULT_CONFIG = {
    # --- General ---
    "general": {
        "_label": "General",
        "last_directory": "",
        "recent_projects_max": 10,
    },
    # --- Measurement ---
    "measurement": {
        "_label": "Measurement",
        "number_format": ".4g",  # Python format spec used for labels
        "spline_points": 200,  # samples along a drawn spline
        "max_polyline_points": 0,  # 0 = unbounded
        "auto_edit": False,  # go to edit mode after each measurement
        "repeat_tool": False,  # restart the same tool after each measurement
        "show_all": False,  # draw measurements of every image
        "zoom_select": False,  # zoom in before placing each point
        "zoom_box": 250,  # zoom-select window in image pixels
        "hit_tolerance": 0.05,  # fraction of the smaller visible extent
        "default_unit": "-",
        "default_calibration_length": 1.0,
    },
    # --- Appearance ---
    "appearance": {
        "_label": "Appearance",
        "primary_color": "#0072bd",
        "secondary_color": "#ffffff",
        "preview_color": "#d95319",
        "marker_size": 6,
        "line_width": 1.5,
        "secondary_line_width": 0.5,
        "font_size": 10,
        "text_box_alpha": 0.6,
    },
    # --- Logging ---
    "logging": {
        "_label": "Logging",
        "log_level": "INFO",  # DEBUG, INFO, WARNING, ERROR, CRITICAL
        "log_to_file": True,
        "log_retention_days": 30,
        "log_max_size_mb": 10,
        "log_console_output": True,
    },
}
