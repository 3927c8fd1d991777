import unittest
from datetime import date, datetime
from decimal import Decimal

from backend.recurrence_engine import RecurrencePattern, RecurrenceRule
from backend.recurring_instances import (
    RecurrenceSchedule,
    RecurringTransactionInstance,
    TransactionTemplate,
    generate_recurring_transaction_instances,
    get_next_execution_date,
    project_instances_in_window,
    should_execute_today,
)


def make_template(**overrides) -> TransactionTemplate:
    values = {
        "amount": "1500,50",
        "description": "Rent",
        "type": "expense",
        "date": date(2024, 1, 31),
        "category_id": 3,
        "space_id": 1,
        "account_id": 2,
    }
    values.update(overrides)
    return TransactionTemplate(**values)


class GenerateRecurringTransactionInstancesTests(unittest.TestCase):
    def test_builds_numbered_instances(self) -> None:
        rule = RecurrenceRule(pattern=RecurrencePattern.MONTHLY, interval=1)

        instances = generate_recurring_transaction_instances(
            make_template(), rule, "42", max_instances=3
        )

        self.assertEqual(
            instances[0],
            RecurringTransactionInstance(
                id="42-1",
                original_transaction_id="42",
                scheduled_date=date(2024, 2, 29),
                amount=Decimal("1500.50"),
                description="Rent (Recurring)",
                type="EXPENSE",
                category_id=3,
                space_id=1,
                account_id=2,
                recurrence_id="42",
            ),
        )
        self.assertEqual([instance.id for instance in instances], ["42-1", "42-2", "42-3"])
        self.assertEqual(
            [instance.scheduled_date for instance in instances],
            [date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)],
        )
        self.assertTrue(all(instance.is_generated for instance in instances))

    def test_defaults_to_six_instances(self) -> None:
        rule = RecurrenceRule(pattern=RecurrencePattern.DAILY, interval=1)

        self.assertEqual(
            len(generate_recurring_transaction_instances(make_template(), rule, "1")), 6
        )

    def test_rejects_malformed_amount(self) -> None:
        rule = RecurrenceRule(pattern=RecurrencePattern.DAILY, interval=1)

        with self.assertRaises(ValueError):
            generate_recurring_transaction_instances(
                make_template(amount="1.234,56"), rule, "1"
            )

    def test_rejects_unsupported_type(self) -> None:
        rule = RecurrenceRule(pattern=RecurrencePattern.DAILY, interval=1)

        with self.assertRaises(ValueError):
            generate_recurring_transaction_instances(
                make_template(type="transfer"), rule, "1"
            )


class ProjectInstancesInWindowTests(unittest.TestCase):
    def test_keeps_series_numbering(self) -> None:
        rule = RecurrenceRule(pattern=RecurrencePattern.WEEKLY, interval=1)

        instances = project_instances_in_window(
            make_template(date=date(2024, 1, 1), amount=Decimal("20")),
            rule,
            "7",
            window_start=date(2024, 1, 20),
            window_end=date(2024, 2, 10),
        )

        self.assertEqual(
            [(instance.id, instance.scheduled_date) for instance in instances],
            [
                ("7-3", date(2024, 1, 22)),
                ("7-4", date(2024, 1, 29)),
                ("7-5", date(2024, 2, 5)),
            ],
        )

    def test_stops_at_max_occurrences(self) -> None:
        rule = RecurrenceRule(
            pattern=RecurrencePattern.WEEKLY, interval=1, max_occurrences=3
        )

        instances = project_instances_in_window(
            make_template(date=date(2024, 1, 1)),
            rule,
            "7",
            window_start=date(2024, 1, 1),
            window_end=date(2024, 12, 31),
        )

        self.assertEqual(len(instances), 3)

    def test_rejects_inverted_window(self) -> None:
        rule = RecurrenceRule(pattern=RecurrencePattern.DAILY, interval=1)

        with self.assertRaises(ValueError):
            project_instances_in_window(
                make_template(), rule, "1", date(2024, 2, 1), date(2024, 1, 1)
            )


class RecurrenceScheduleTests(unittest.TestCase):
    def make_schedule(self, **overrides) -> RecurrenceSchedule:
        values = {
            "id": "sched-1",
            "template": make_template(),
            "rule": RecurrenceRule(pattern=RecurrencePattern.MONTHLY, interval=1),
            "start_date": date(2024, 1, 31),
            "next_scheduled_date": date(2024, 2, 29),
            "is_active": True,
            "created_at": datetime(2024, 1, 31, 9, 0),
        }
        values.update(overrides)
        return RecurrenceSchedule(**values)

    def test_next_execution_starts_from_start_date(self) -> None:
        self.assertEqual(get_next_execution_date(self.make_schedule()), date(2024, 2, 29))

    def test_next_execution_keeps_anchor_day(self) -> None:
        schedule = self.make_schedule(last_generated_date=date(2024, 2, 29))

        self.assertEqual(get_next_execution_date(schedule), date(2024, 3, 31))

    def test_should_execute_today(self) -> None:
        schedule = self.make_schedule(last_generated_date=date(2024, 2, 29))

        self.assertTrue(should_execute_today(schedule, today=date(2024, 3, 31)))
        self.assertFalse(should_execute_today(schedule, today=date(2024, 3, 30)))

    def test_inactive_or_ended_schedule_never_executes(self) -> None:
        inactive = self.make_schedule(is_active=False)
        ended = self.make_schedule(
            rule=RecurrenceRule(
                pattern=RecurrencePattern.MONTHLY,
                interval=1,
                end_date=date(2024, 2, 15),
            )
        )

        self.assertFalse(should_execute_today(inactive, today=date(2024, 2, 29)))
        self.assertFalse(should_execute_today(ended, today=date(2024, 2, 29)))


if __name__ == "__main__":
    unittest.main()
