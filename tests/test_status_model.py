import threading
import unittest

from grblcad.status_model import StatusModel, parse_status
from grblcad.types import MachineState


class TestParseStatus(unittest.TestCase):
    def test_basic_frame(self):
        status = parse_status("<Idle|MPos:1.000,2.000,3.000|FS:500,1000>")
        self.assertEqual(status.state, MachineState.IDLE)
        self.assertEqual(status.position, (1.0, 2.0, 3.0))
        self.assertEqual(status.feed, 500.0)
        self.assertEqual(status.spindle, 1000.0)
        self.assertEqual(status.position_kind, "MPos")

    def test_wpos_and_extras(self):
        status = parse_status("<Hold:1|WPos:-1.5,0,2|Bf:15,128|F:300|WCO:1,2,3|Ov:100,100,100>")
        self.assertEqual(status.state, MachineState.HOLD)
        self.assertEqual(status.sub_state, 1)
        self.assertEqual(status.position, (-1.5, 0.0, 2.0))
        self.assertEqual(status.position_kind, "WPos")
        self.assertEqual(status.feed, 300.0)
        self.assertEqual(status.spindle, 0.0)
        self.assertEqual(status.buffer, (15, 128))
        self.assertEqual(status.work_offset, (1.0, 2.0, 3.0))

    def test_jog_and_alarm_states(self):
        self.assertEqual(parse_status("<Jog|MPos:0,0,0|FS:0,0>").state, MachineState.JOG)
        self.assertEqual(parse_status("<Alarm|MPos:0,0,0|FS:0,0>").state, MachineState.ALARM)

    def test_malformed_frames_rejected(self):
        for line in (
            "Idle|MPos:0,0,0|FS:0,0>",
            "<Idle|MPos:0,0,0|FS:0,0",
            "<Bogus|MPos:0,0,0|FS:0,0>",
            "<Idle|FS:0,0>",
            "<Idle|MPos:1,2|FS:0,0>",
            "<Idle|MPos:a,b,c|FS:0,0>",
            "<Idle|MPos:0,0,0|FS:x,0>",
            "<Disconnected|MPos:0,0,0>",
            "",
        ):
            with self.subTest(line=line):
                self.assertIsNone(parse_status(line))


class TestStatusModel(unittest.TestCase):
    def setUp(self):
        self.model = StatusModel()

    def test_keeps_last_good_status(self):
        self.assertEqual(self.model.current.state, MachineState.DISCONNECTED)
        good = self.model.apply("<Run|MPos:1,1,1|FS:100,0>")
        self.assertIsNotNone(good)
        with self.assertLogs("grblcad.status_model", level="WARNING"):
            self.assertIsNone(self.model.apply("<Run|MPos:garbage>"))
        self.assertIs(self.model.current, good)

    def test_link_state_replaces_status(self):
        self.model.apply("<Idle|MPos:1,1,1|FS:0,0>")
        status = self.model.set_link_state(MachineState.DISCONNECTED)
        self.assertIs(self.model.current, status)
        self.assertEqual(status.position, (0.0, 0.0, 0.0))

    def test_work_position_uses_remembered_offset(self):
        self.model.apply("<Idle|MPos:10,20,30|FS:0,0|WCO:1,2,3>")
        self.model.apply("<Idle|MPos:11,20,30|FS:0,0>")
        self.assertEqual(self.model.work_position(), (10.0, 18.0, 27.0))
        self.model.apply("<Idle|WPos:4,5,6|FS:0,0>")
        self.assertEqual(self.model.work_position(), (4.0, 5.0, 6.0))

    def test_safe_across_threads(self):
        def spam(n):
            for i in range(200):
                self.model.apply(f"<Run|MPos:{n},{i},0|FS:0,0>")

        threads = [threading.Thread(target=spam, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(self.model.current.state, MachineState.RUN)
        self.assertEqual(self.model.current.position[1], 199.0)
