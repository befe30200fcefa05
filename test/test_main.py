from pathlib import Path
import os
import unittest

import main

CONFIG_FILE = Path(__file__).parent.parent / 'logging_config.json'


class TestSetupLogging(unittest.TestCase):

    def test_unset_levels_take_log_level(self):
        config = main.setup_logging(str(CONFIG_FILE), log_level='DEBUG')
        self.assertEqual(config['loggers']['roster_synchronizer']['level'],
                         'DEBUG')
        self.assertEqual(config['handlers']['console']['level'], 'DEBUG')
        self.assertEqual(config['loggers']['sqlalchemy.engine']['level'],
                         'WARNING')

    def test_log_dir(self):
        config = main.setup_logging(str(CONFIG_FILE), log_dir='/var/log/sync')
        self.assertEqual(config['handlers']['file']['filename'],
                         os.path.join('/var/log/sync', 'roster_sync.log'))
        self.assertNotIn('filename', config['handlers']['console'])


class TestParseArgs(unittest.TestCase):

    def test_defaults(self):
        args = main.parse_args([])
        self.assertIsNone(args.school)
        self.assertIsNone(args.district)
        self.assertFalse(args.scheduled)
        self.assertFalse(args.force_full)
        self.assertEqual(args.initiated_by, 'CommandLine')

    def test_school(self):
        args = main.parse_args(['--school', '12', '--force-full'])
        self.assertEqual(args.school, 12)
        self.assertTrue(args.force_full)

    def test_scopes_exclusive(self):
        with self.assertRaises(SystemExit):
            main.parse_args(['--school', '1', '--district', '2'])


if __name__ == '__main__':
    unittest.main()
