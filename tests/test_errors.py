import logging
import unittest

from dirserve import errors


class StatusCodeTests(unittest.TestCase):
    def test_flat_status_codes(self):
        cases = [
            (errors.IoError("Failed to create /x", OSError(13, "Permission denied")), 500),
            (errors.MultipartError("truncated"), 500),
            (errors.DuplicateFileError(), 500),
            (errors.InvalidPathError("illegal directory name ../evil"), 500),
            (errors.InvalidHttpCredentials(), 401),
            (errors.ParseError("HTTP header", "no filename"), 400),
            (errors.InsufficientPermissionsError("/srv"), 403),
            (errors.InvalidHttpRequestError("Missing query parameter 'path'"), 400),
            (errors.ConflictMkdirError("/srv/sub"), 409),
            (errors.RouteNotFoundError("/nope"), 404),
            (errors.ArchiveCreationDetailError("tar failed"), 500),
        ]
        for error, status in cases:
            with self.subTest(error=type(error).__name__):
                self.assertEqual(error.status_code, status)

    def test_composite_errors_delegate_to_their_cause(self):
        auth_error = errors.HttpAuthenticationError(errors.InvalidHttpCredentials())
        self.assertEqual(auth_error.status_code, 401)

        parse_error = errors.HttpAuthenticationError(
            errors.ParseError("HTTP authentication header", "invalid base64")
        )
        self.assertEqual(parse_error.status_code, 400)

        nested = errors.ArchiveCreationError(
            "archive",
            errors.HttpAuthenticationError(errors.InsufficientPermissionsError("/srv")),
        )
        self.assertEqual(nested.status_code, 403)

    def test_archive_detail_is_the_innermost_cause(self):
        error = errors.ArchiveCreationError(
            "archive", errors.ArchiveCreationDetailError("tar header could not be written")
        )
        self.assertEqual(
            str(error),
            "An error occured while creating the archive\ncaused by: tar header could not be written",
        )
        self.assertEqual(error.cause.detail, "tar header could not be written")
        self.assertEqual(error.status_code, 500)

    def test_message_keeps_the_cause_chain(self):
        error = errors.ArchiveCreationError(
            "tarball", errors.IoError("Failed to read /srv/a", OSError(5, "Input/output error"))
        )
        lines = str(error).splitlines()
        self.assertEqual(lines[0], "An error occured while creating the tarball")
        self.assertEqual(lines[1], "caused by: Failed to read /srv/a")
        self.assertIn("Input/output error", lines[2])


class LogErrorChainTests(unittest.TestCase):
    def test_one_line_per_cause(self):
        error = errors.HttpAuthenticationError(errors.InvalidHttpCredentials())
        with self.assertLogs("dirserve.errors", level="ERROR") as captured:
            errors.log_error_chain(str(error))
        self.assertEqual(len(captured.records), 2)
        self.assertEqual(
            [record.getMessage() for record in captured.records],
            [
                "An error occured during HTTP authentication",
                "caused by: Invalid credentials for HTTP authentication",
            ],
        )

    def test_custom_logger(self):
        custom = logging.getLogger("dirserve.tests.custom")
        with self.assertLogs(custom, level="ERROR") as captured:
            errors.log_error_chain("first\nsecond", custom)
        self.assertEqual(len(captured.records), 2)


if __name__ == "__main__":
    unittest.main()
