import math
import unittest

from attendance_svc.core.errors import FaceEngineNotReady, NoFaceDetected
from attendance_svc.core.face import FaceEngine, FaceMatcher


class TestFaceMatcher(unittest.TestCase):
    def setUp(self):
        self.matcher = FaceMatcher(threshold=0.6)
        self.stored = [0.1] * 128

    def test_identical_descriptors_match(self):
        self.assertTrue(self.matcher.verify(list(self.stored), self.stored))
        self.assertEqual(self.matcher.distance(self.stored, self.stored), 0.0)

    def test_close_descriptor_matches(self):
        self.assertTrue(self.matcher.verify([0.11] * 128, self.stored))

    def test_distance_at_or_beyond_threshold_never_matches(self):
        origin = [0.0] * 128
        exact = [0.0] * 127 + [0.6]
        self.assertGreaterEqual(self.matcher.distance(exact, origin), 0.6)
        self.assertFalse(self.matcher.verify(exact, origin))
        far = [0.1 + 0.06] * 128
        self.assertGreater(self.matcher.distance(far, self.stored), 0.6)
        self.assertFalse(self.matcher.verify(far, self.stored))

    def test_absent_descriptors_never_match(self):
        self.assertFalse(self.matcher.verify(self.stored, None))
        self.assertFalse(self.matcher.verify(None, self.stored))

    def test_length_mismatch_never_matches(self):
        self.assertFalse(self.matcher.verify([0.1] * 64, self.stored))

    def test_euclidean(self):
        self.assertTrue(math.isclose(self.matcher.distance([0, 0], [3, 4]), 5.0))


class TestFaceEngine(unittest.TestCase):
    def test_not_ready_until_installed(self):
        engine = FaceEngine()
        self.assertFalse(engine.is_ready)
        with self.assertRaises(FaceEngineNotReady):
            engine.extract(b"jpeg")

    def test_extract_uses_installed_extractor(self):
        engine = FaceEngine()
        engine.install(lambda image: [0.5] * 4)
        self.assertTrue(engine.is_ready)
        self.assertEqual(engine.extract(b"jpeg"), [0.5] * 4)
        engine.reset()
        self.assertFalse(engine.is_ready)

    def test_no_face(self):
        engine = FaceEngine()
        engine.install(lambda image: None)
        with self.assertRaises(NoFaceDetected):
            engine.extract(b"jpeg")


if __name__ == "__main__":
    unittest.main()
