import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from dirserve.auth import HashedPassword, PlainPassword, get_hash
from dirserve.config import (
    DEFAULT_COLOR_SCHEME,
    DEFAULT_UPLOAD_RATE_LIMIT_PER_MINUTE,
    load_config,
    parse_auth,
)
from dirserve.errors import (
    InvalidAuthFormat,
    InvalidHashMethod,
    InvalidPasswordHash,
    IoError,
    NoSymlinksOptionWithSymlinkServePath,
    PasswordTooLongError,
)

SHA256_OF_PASSWORD = get_hash("sha256", "password").hex()
SHA512_OF_PASSWORD = get_hash("sha512", "password").hex()


class ParseAuthTests(unittest.TestCase):
    def test_plain_password(self):
        account = parse_auth("username:password")
        self.assertEqual(account.username, "username")
        self.assertEqual(account.password, PlainPassword("password"))

    def test_empty_plain_password(self):
        self.assertEqual(parse_auth("username:").password, PlainPassword(""))

    def test_hashed_passwords(self):
        for method, digest in [("sha256", SHA256_OF_PASSWORD), ("sha512", SHA512_OF_PASSWORD)]:
            with self.subTest(method=method):
                account = parse_auth(f"username:{method}:{digest}")
                self.assertEqual(account.password, HashedPassword(method, bytes.fromhex(digest)))

    def test_errors(self):
        cases = [
            ("foo", InvalidAuthFormat),
            ("username:blahblah:abcd", InvalidHashMethod),
            ("username:sha256:invalid", InvalidPasswordHash),
            ("username:sha256:abcd", InvalidPasswordHash),
            (f"username:sha512:{SHA256_OF_PASSWORD}", InvalidPasswordHash),
            ("username:" + "x" * 256, PasswordTooLongError),
        ]
        for value, error in cases:
            with self.subTest(value=value[:40]):
                with self.assertRaises(error):
                    parse_auth(value)

    def test_longest_plain_password_is_accepted(self):
        self.assertEqual(parse_auth("username:" + "x" * 255).password, PlainPassword("x" * 255))


class LoadConfigTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.base = Path(self.tmp.name).resolve()
        self.root = self.base / "root"
        self.root.mkdir()
        patcher = mock.patch.dict(os.environ, {}, clear=True)
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        self.tmp.cleanup()

    def test_defaults(self):
        config = load_config(root_path=str(self.root))
        self.assertEqual(config.root_path, self.root)
        self.assertEqual(config.accounts, ())
        self.assertFalse(config.file_upload)
        self.assertFalse(config.mkdir_enabled)
        self.assertFalse(config.overwrite_files)
        self.assertEqual(config.default_color_scheme, DEFAULT_COLOR_SCHEME)
        self.assertEqual(config.upload_rate_limit, f"{DEFAULT_UPLOAD_RATE_LIMIT_PER_MINUTE} per minute")

    def test_environment(self):
        os.environ.update(
            {
                "DIRSERVE_ROOT": str(self.root),
                "DIRSERVE_AUTH": "alice:secret, bob:sha256:" + SHA256_OF_PASSWORD,
                "DIRSERVE_UPLOAD_FILES": "true",
                "DIRSERVE_MKDIR": "1",
                "DIRSERVE_OVERWRITE_FILES": "yes",
                "DIRSERVE_COLOR_SCHEME": "Monokai",
                "DIRSERVE_TITLE": "shared files",
                "DIRSERVE_RATE_LIMIT_UPLOADS_PER_MINUTE": "5",
            }
        )
        config = load_config()
        self.assertEqual(config.root_path, self.root)
        self.assertEqual([account.username for account in config.accounts], ["alice", "bob"])
        self.assertTrue(config.file_upload)
        self.assertTrue(config.mkdir_enabled)
        self.assertTrue(config.overwrite_files)
        self.assertEqual(config.default_color_scheme, "monokai")
        self.assertEqual(config.title, "shared files")
        self.assertEqual(config.upload_rate_limit, "5 per minute")

    def test_invalid_environment_values_fall_back(self):
        os.environ["DIRSERVE_RATE_LIMIT_UPLOADS_PER_MINUTE"] = "lots"
        os.environ["DIRSERVE_COLOR_SCHEME"] = "neon"
        with self.assertLogs("dirserve.config", level="WARNING"):
            config = load_config(root_path=str(self.root))
        self.assertEqual(config.upload_rate_limit_per_minute, DEFAULT_UPLOAD_RATE_LIMIT_PER_MINUTE)
        self.assertEqual(config.default_color_scheme, DEFAULT_COLOR_SCHEME)

    def test_overrides_take_precedence(self):
        other = self.base / "other"
        other.mkdir()
        os.environ["DIRSERVE_ROOT"] = str(self.root)
        os.environ["DIRSERVE_AUTH"] = "alice:secret"
        config = load_config(
            root_path=str(other),
            auth=["carol:pw"],
            file_upload=True,
            show_hidden=None,
            title="override",
        )
        self.assertEqual(config.root_path, other)
        self.assertEqual([account.username for account in config.accounts], ["carol"])
        self.assertTrue(config.file_upload)
        self.assertFalse(config.show_hidden)
        self.assertEqual(config.title, "override")

    def test_false_switch_does_not_disable_environment(self):
        os.environ["DIRSERVE_UPLOAD_FILES"] = "on"
        config = load_config(root_path=str(self.root), file_upload=False)
        self.assertTrue(config.file_upload)

    def test_missing_root_is_an_io_error(self):
        with self.assertRaises(IoError):
            load_config(root_path=str(self.base / "missing"))

    def test_bad_auth_entry_propagates(self):
        with self.assertRaises(InvalidAuthFormat):
            load_config(root_path=str(self.root), auth=["nocolon"])

    @unittest.skipIf(os.name == "nt", "symlinks require POSIX")
    def test_no_symlinks_rejects_symlinked_root(self):
        link = self.base / "link"
        os.symlink(self.root, link)
        with self.assertRaises(NoSymlinksOptionWithSymlinkServePath):
            load_config(root_path=str(link), no_symlinks=True)
        self.assertEqual(load_config(root_path=str(link)).root_path, self.root)


if __name__ == "__main__":
    unittest.main()
