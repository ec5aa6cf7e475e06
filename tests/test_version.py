import grpcwebcurl
import unittest


class VersionTestCase(unittest.TestCase):
    """ Basic test cases """

    def test_version(self):
        """ check grpcwebcurl exposes a version attribute """
        self.assertTrue(hasattr(grpcwebcurl, "__version__"))
        self.assertIsInstance(grpcwebcurl.__version__, str)


if __name__ == "__main__":
    unittest.main()
