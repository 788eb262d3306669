#!/usr/bin/env python3
# GrblCAD Core (GRBL link and G-code motion core)
# Copyright (C) 2026 Bob Kolbasowski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Custom exceptions for GrblCAD.

Connection failures at open time are typed so callers can tell a missing
port from a permissions problem or a port that is already in use.
"""

from typing import Any, Optional


class GrblCadException(Exception):
    """Base exception for all GrblCAD errors."""
    pass


# ============================================================================
# SERIAL COMMUNICATION EXCEPTIONS
# ============================================================================

class SerialException(GrblCadException):
    """Base exception for serial communication errors."""
    pass


class SerialConnectionError(SerialException):
    """Failed to open the serial port."""

    def __init__(self, message: str, port: Optional[str] = None):
        super().__init__(message)
        self.port = port


class PortUnavailableError(SerialConnectionError):
    """The port does not exist or is held by another process."""
    pass


class PermissionDeniedError(SerialConnectionError):
    """The OS refused access to the port."""
    pass


class AlreadyOpenError(SerialConnectionError):
    """The link already owns an open connection."""
    pass


class DeviceError(SerialConnectionError):
    """The device failed while opening or configuring the port."""
    pass


class NotConnectedError(SerialException):
    """Attempted a write while the link is closed."""
    pass


# ============================================================================
# GRBL EXCEPTIONS
# ============================================================================

class GrblException(GrblCadException):
    """Base exception for GRBL-related errors."""
    pass


class GrblStreamingException(GrblException):
    """Invalid job request (already running, empty program)."""
    pass


# ============================================================================
# SETTINGS EXCEPTIONS
# ============================================================================

class SettingsException(GrblCadException):
    """Base exception for configuration file errors."""
    pass


class SettingsLoadError(SettingsException):
    """Failed to load settings file."""
    pass


class SettingsSaveError(SettingsException):
    """Failed to save settings file."""
    pass


class SettingsValidationError(SettingsException):
    """Settings validation failed."""
    pass


# ============================================================================
# VALIDATION EXCEPTIONS
# ============================================================================

class ValidationException(GrblCadException):
    """Base exception for validation errors."""
    pass


class InvalidParameterError(ValidationException):
    """Invalid parameter value."""

    def __init__(self, parameter_name: str, value: Any, reason: Optional[str] = None):
        self.parameter_name = parameter_name
        self.value = value
        self.reason = reason

        message = f"Invalid value for '{parameter_name}': {value}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class InvalidRangeError(ValidationException):
    """Value out of valid range."""

    def __init__(self, value, min_val, max_val):
        self.value = value
        self.min_val = min_val
        self.max_val = max_val

        message = f"Value {value} out of range [{min_val}, {max_val}]"
        super().__init__(message)
