import unittest

from grblcad.utils.exceptions import InvalidParameterError, InvalidRangeError
from grblcad.utils.grbl_errors import annotate_grbl_message, describe_grbl_code, parse_grbl_code
from grblcad.utils.validation import (
    validate_axis,
    validate_baud_rate,
    validate_feed_rate,
    validate_grbl_setting,
    validate_interval,
    validate_line_index,
    validate_port_name,
    validate_setting_id,
)


class TestValidators(unittest.TestCase):
    def test_port_name(self):
        self.assertEqual(validate_port_name(" COM3 "), "COM3")
        self.assertEqual(validate_port_name("rfc2217://host:2217"), "rfc2217://host:2217")
        for bad in ("", "   ", None, 3):
            with self.subTest(port=bad):
                with self.assertRaises(InvalidParameterError):
                    validate_port_name(bad)

    def test_baud_rate(self):
        self.assertEqual(validate_baud_rate("115200"), 115200)
        with self.assertRaises(InvalidParameterError):
            validate_baud_rate(1234)
        with self.assertRaises(InvalidParameterError):
            validate_baud_rate("fast")

    def test_feed_rate_and_axis(self):
        self.assertEqual(validate_feed_rate("500"), 500.0)
        with self.assertRaises(InvalidParameterError):
            validate_feed_rate(0)
        self.assertEqual(validate_axis(" y "), "Y")
        with self.assertRaises(InvalidParameterError):
            validate_axis("A")

    def test_interval_and_line_index(self):
        self.assertEqual(validate_interval(0.2, 0.05), 0.2)
        with self.assertRaises(InvalidParameterError):
            validate_interval(0.01, 0.05)
        self.assertEqual(validate_line_index("3", 4), 3)
        with self.assertRaises(InvalidParameterError):
            validate_line_index(-1)
        with self.assertRaises(InvalidRangeError):
            validate_line_index(5, 4)

    def test_setting_id(self):
        self.assertEqual(validate_setting_id("$110"), "110")
        self.assertEqual(validate_setting_id(7), "7")
        with self.assertRaises(InvalidParameterError):
            validate_setting_id("$N0")

    def test_grbl_setting_values(self):
        self.assertEqual(validate_grbl_setting("$110", " 500.0 "), ("110", "500.0"))
        # unknown ids pass through unchecked
        self.assertEqual(validate_grbl_setting(400, "abc"), ("400", "abc"))
        with self.assertRaises(InvalidRangeError):
            validate_grbl_setting(20, "2")
        for setting_id, value in ((110, "fast"), (110, ""), (400, "1\n$H")):
            with self.subTest(setting_id=setting_id, value=value):
                with self.assertRaises(InvalidParameterError):
                    validate_grbl_setting(setting_id, value)


class TestGrblCodes(unittest.TestCase):
    def test_parse(self):
        self.assertEqual(parse_grbl_code("error:20"), ("error", 20))
        self.assertEqual(parse_grbl_code("ALARM:1"), ("alarm", 1))
        self.assertIsNone(parse_grbl_code("ok"))

    def test_describe_and_annotate(self):
        self.assertTrue(describe_grbl_code("alarm", 2).startswith("Soft limit"))
        self.assertIsNone(describe_grbl_code("error", 99))
        self.assertEqual(annotate_grbl_message("error:22"), "error:22 (Undefined feed rate.)")
        self.assertEqual(annotate_grbl_message("error:99"), "error:99")
        self.assertEqual(annotate_grbl_message("ok"), "ok")
