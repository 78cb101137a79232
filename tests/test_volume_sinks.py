import sys
import types
import unittest
from unittest import mock

from config import VolumeConfig
from volume_sinks import DryRunVolumeSink, EndpointVolumeSink, create_volume_sink


class FakeCOMError(Exception):
    pass


class FakeEndpointVolume:
    def __init__(self, scalar: float = 0.4):
        self.scalar = scalar
        self.fail = False

    def GetMasterVolumeLevelScalar(self):
        if self.fail:
            raise FakeCOMError("endpoint gone")
        return self.scalar

    def SetMasterVolumeLevelScalar(self, scalar, context):
        if self.fail:
            raise FakeCOMError("endpoint gone")
        self.scalar = scalar


class FakeAudioDevice:
    """Shape of the device wrapper returned by current pycaw: no ``Activate``."""

    def __init__(self, endpoint):
        self._endpoint = endpoint

    @property
    def EndpointVolume(self):
        return self._endpoint


def fake_audio_modules(get_speakers):
    comtypes = types.ModuleType("comtypes")
    comtypes.CLSCTX_ALL = 23
    comtypes.COMError = FakeCOMError

    pycaw_pycaw = types.ModuleType("pycaw.pycaw")
    pycaw_pycaw.AudioUtilities = types.SimpleNamespace(GetSpeakers=get_speakers)
    pycaw_pycaw.IAudioEndpointVolume = type("IAudioEndpointVolume", (), {"_iid_": "iid"})
    pycaw = types.ModuleType("pycaw")
    pycaw.pycaw = pycaw_pycaw

    return mock.patch.dict(sys.modules, {
        "comtypes": comtypes,
        "pycaw": pycaw,
        "pycaw.pycaw": pycaw_pycaw,
    })


class TestEndpointVolumeSink(unittest.TestCase):
    def test_device_wrapper_endpoint_volume(self):
        endpoint = FakeEndpointVolume(scalar=0.4)
        with fake_audio_modules(lambda: FakeAudioDevice(endpoint)):
            sink = EndpointVolumeSink(max_step=15)

        self.assertEqual(sink.current_step, 6)
        sink.set_step(3)
        self.assertAlmostEqual(endpoint.scalar, 0.2)

    def test_create_uses_system_mixer_when_reachable(self):
        endpoint = FakeEndpointVolume()
        with fake_audio_modules(lambda: FakeAudioDevice(endpoint)):
            sink = create_volume_sink(VolumeConfig())

        self.assertIsInstance(sink, EndpointVolumeSink)

    def test_com_error_on_open_falls_back_to_dry_run(self):
        def no_endpoint():
            raise FakeCOMError("element not found")

        with fake_audio_modules(no_endpoint):
            with self.assertRaises(OSError):
                EndpointVolumeSink()
            sink = create_volume_sink(VolumeConfig())

        self.assertIsInstance(sink, DryRunVolumeSink)

    def test_missing_speakers_falls_back_to_dry_run(self):
        with fake_audio_modules(lambda: None):
            sink = create_volume_sink(VolumeConfig())

        self.assertIsInstance(sink, DryRunVolumeSink)

    def test_com_errors_surface_as_os_error(self):
        endpoint = FakeEndpointVolume()
        with fake_audio_modules(lambda: FakeAudioDevice(endpoint)):
            sink = EndpointVolumeSink()
        endpoint.fail = True

        with self.assertRaises(OSError):
            sink.set_step(5)
        with self.assertRaises(OSError):
            _ = sink.current_step


if __name__ == "__main__":
    unittest.main()
