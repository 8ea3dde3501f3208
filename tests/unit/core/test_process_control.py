"""Tests for process suspension controllers."""

from unittest.mock import patch

import psutil
import pytest

from encodegate.core.process_control import (
    NullProcessController,
    ProcessControlError,
    PsutilProcessController,
    get_process_controller,
)


class TestPsutilProcessController:
    def test_supported(self):
        assert PsutilProcessController().supported is True

    @patch("encodegate.core.process_control.psutil.Process")
    def test_suspend_and_resume(self, mock_process):
        controller = PsutilProcessController()
        controller.suspend(1234)
        controller.resume(1234)
        mock_process.assert_called_with(1234)
        mock_process.return_value.suspend.assert_called_once()
        mock_process.return_value.resume.assert_called_once()

    @patch("encodegate.core.process_control.psutil.Process")
    def test_missing_process_raises(self, mock_process):
        mock_process.side_effect = psutil.NoSuchProcess(1234)
        with pytest.raises(ProcessControlError, match="suspend pid 1234"):
            PsutilProcessController().suspend(1234)

    @patch("encodegate.core.process_control.psutil.Process")
    def test_access_denied_raises(self, mock_process):
        mock_process.return_value.resume.side_effect = psutil.AccessDenied(1234)
        with pytest.raises(ProcessControlError, match="resume pid 1234"):
            PsutilProcessController().resume(1234)


class TestNullProcessController:
    def test_noop(self):
        controller = NullProcessController()
        assert controller.supported is False
        controller.suspend(1)
        controller.resume(1)


class TestGetProcessController:
    def test_posix_gets_psutil(self):
        with patch("encodegate.core.process_control.psutil.POSIX", True):
            controller = get_process_controller()
        assert isinstance(controller, PsutilProcessController)

    def test_unknown_platform_gets_null(self):
        with (
            patch("encodegate.core.process_control.psutil.POSIX", False),
            patch("encodegate.core.process_control.psutil.WINDOWS", False),
        ):
            controller = get_process_controller()
        assert isinstance(controller, NullProcessController)
