"""
Tests for crmcore logging setup.
"""

import logging

from crmcore.logging import ContextFormatter, setup_logging


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("dispatch", logging.INFO, __file__, 1, "Credits consumed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestContextFormatter:
    def test_renders_extra_fields_sorted(self):
        formatter = ContextFormatter("%(levelname)s %(message)s")

        line = formatter.format(make_record(new_balance=70, company_id="c1"))

        assert line == "INFO Credits consumed | company_id=c1 new_balance=70"

    def test_plain_message_without_extra(self):
        formatter = ContextFormatter("%(message)s")

        assert formatter.format(make_record()) == "Credits consumed"


class TestSetupLogging:
    def test_installs_one_handler(self):
        root = logging.getLogger()
        before = [h for h in root.handlers if getattr(h, "_crmcore", False)]

        setup_logging("DEBUG")
        setup_logging("WARNING")

        installed = [h for h in root.handlers if getattr(h, "_crmcore", False)]
        assert len(installed) == max(1, len(before))
        assert root.level == logging.WARNING
