"""
MFA token sources.

The AWS CLI runs a credential_process with stdout and stderr captured, so
everything here talks to the controlling terminal directly. Nothing is ever
written to the standard streams.
"""

import logging
import os
from abc import ABC, abstractmethod
from contextlib import contextmanager

from .errors import MFAError

logger = logging.getLogger(__name__)

MFA_PROMPT = "MFA Code: "


@contextmanager
def open_terminal():
    """
    Open the controlling terminal for reading and writing.

    Yields:
        tuple: (reader, writer) text streams attached to the terminal

    Raises:
        MFAError: If the process has no controlling terminal
    """
    if os.name == "nt":
        input_path, output_path = "CONIN$", "CONOUT$"
    else:
        input_path = output_path = "/dev/tty"

    try:
        reader = open(input_path, "r", encoding="utf-8")
    except OSError as e:
        raise MFAError(f"No controlling terminal available: {e}") from e
    try:
        writer = open(output_path, "w", encoding="utf-8")
    except OSError as e:
        reader.close()
        raise MFAError(f"No controlling terminal available: {e}") from e

    try:
        yield reader, writer
    finally:
        writer.close()
        reader.close()


def notify_terminal(message):
    """Write a message to the controlling terminal."""
    with open_terminal() as (_, writer):
        writer.write(message)
        writer.flush()


class MFATokenSource(ABC):
    """Supplies one-time MFA codes to the assume-role exchange."""

    @abstractmethod
    def obtain(self):
        """
        Get a one-time code.

        Returns:
            str: The MFA code

        Raises:
            MFAError: If no code could be obtained
        """

    def __call__(self):
        return self.obtain()


class TerminalPrompt(MFATokenSource):
    """Ask the user to type the MFA code on the controlling terminal."""

    def __init__(self, prompt=MFA_PROMPT):
        self.prompt = prompt

    def obtain(self):
        with open_terminal() as (reader, writer):
            writer.write(self.prompt)
            writer.flush()
            line = reader.readline()
        if not line:
            raise MFAError("No MFA code entered")
        return line.strip()


def open_oath_session():
    """
    Connect to the first YubiKey and select its OATH application.

    Returns:
        tuple: (connection, OathSession). The caller closes the connection.

    Raises:
        MFAError: If no YubiKey is present
    """
    from ykman.device import list_all_devices
    from yubikit.core.smartcard import SmartCardConnection
    from yubikit.oath import OathSession

    devices = list_all_devices([SmartCardConnection])
    if not devices:
        raise MFAError("No YubiKey detected")
    if len(devices) > 1:
        logger.warning("Multiple YubiKeys detected, using the first one")

    device, info = devices[0]
    logger.debug("Using YubiKey serial %s", info.serial)
    connection = device.open_connection(SmartCardConnection)
    try:
        session = OathSession(connection)
    except Exception as e:
        connection.close()
        raise MFAError(f"Failed to select the OATH application: {e}") from e
    return connection, session


def credential_matches(credential, name):
    """Check whether an OATH credential is stored under the given name."""
    candidates = {credential.name, credential.id.decode("utf-8", errors="replace")}
    if credential.issuer:
        candidates.add(f"{credential.issuer}:{credential.name}")
    return name in candidates


def touch_notification(name):
    return f"Please touch YubiKey now to generate MFA code for {name!r}...\n"


class YubiKeyOATH(MFATokenSource):
    """
    Calculate the MFA code with the OATH application on a YubiKey.

    Args:
        serial_number: Name of the OATH credential, normally the MFA device ARN
        notify: Called with the credential name before a touch is required.
            Defaults to writing a prompt on the controlling terminal.
    """

    def __init__(self, serial_number, notify=None):
        self.serial_number = serial_number
        self.notify = notify or (lambda name: notify_terminal(touch_notification(name)))

    def obtain(self):
        connection, session = open_oath_session()
        try:
            if session.locked:
                raise MFAError("The YubiKey OATH application is password protected")

            codes = session.calculate_all()
            credential = None
            for cred in codes:
                if credential_matches(cred, self.serial_number):
                    credential = cred
                    break
            if credential is None:
                raise MFAError(f"No OATH credential for {self.serial_number!r} on the YubiKey")

            code = codes[credential]
            if code is None:
                # Touch-protected (or HOTP) credentials are not part of calculate_all
                self.notify(self.serial_number)
                code = session.calculate_code(credential)
            return code.value
        except MFAError:
            raise
        except Exception as e:
            raise MFAError(f"Failed to calculate YubiKey MFA code: {e}") from e
        finally:
            connection.close()
