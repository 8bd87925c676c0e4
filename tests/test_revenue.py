import unittest
from datetime import date, datetime

from tutordesk.revenue import (
    bill_lesson,
    build_dashboard_stats,
    build_export_lines,
    parse_duration_to_hours,
    resolve_date_range,
    summarize_revenue,
)


ALICE = {'id': 1, 'firstName': 'Alice', 'lastName': 'Moreau', 'hourlyRate': 40}
BRUNO = {'id': 2, 'firstName': 'Bruno', 'lastName': 'Roux', 'hourlyRate': None}


def lesson(lesson_id, day, start, duration, students, course=None):
    return {
        'id': lesson_id,
        'date': day,
        'startTime': start,
        'duration': duration,
        'title': f'Lesson {lesson_id}',
        'course': course,
        'students': students,
    }


LESSONS = [
    lesson(1, '2026-03-10', '10:00', '1h30', [ALICE, BRUNO], {'id': 7, 'title': 'Maths'}),
    lesson(2, '2026-03-11', '11:59', '60', [ALICE]),
    lesson(3, '2026-03-11', '12:00', '2:00', [BRUNO]),
]
NOW = datetime(2026, 3, 11, 12, 0)


class DurationParsingTests(unittest.TestCase):
    def test_equivalent_forms(self):
        for text in ('1:30', '1:30:00', '1.5', '90', '1h30', '1.5h', ' 1H30 '):
            self.assertAlmostEqual(parse_duration_to_hours(text), 1.5, msg=text)

    def test_hours_only(self):
        self.assertEqual(parse_duration_to_hours('2h'), 2.0)

    def test_minutes_with_suffix_use_leading_integer(self):
        self.assertAlmostEqual(parse_duration_to_hours('45min'), 0.75)

    def test_unreadable_input_is_zero(self):
        for text in ('', None, 'abc', '1h2h3', 'h', '1:2:3:4', 'x:y'):
            self.assertEqual(parse_duration_to_hours(text), 0.0, msg=repr(text))


class DateRangeTests(unittest.TestCase):
    today = date(2026, 3, 11)

    def test_week_starts_on_sunday(self):
        self.assertEqual(
            resolve_date_range('week', today=self.today),
            (date(2026, 3, 8), date(2026, 3, 14)),
        )

    def test_month_quarter_year_day(self):
        self.assertEqual(resolve_date_range('month', today=self.today), (date(2026, 3, 1), date(2026, 3, 31)))
        self.assertEqual(resolve_date_range('quarter', today=self.today), (date(2026, 1, 1), date(2026, 3, 31)))
        self.assertEqual(resolve_date_range('year', today=self.today), (date(2026, 1, 1), date(2026, 12, 31)))
        self.assertEqual(resolve_date_range('day', today=self.today), (self.today, self.today))

    def test_anchored_month_range_expands_to_whole_months(self):
        self.assertEqual(
            resolve_date_range('month', '2026-02-10', '2026-04-05', today=self.today),
            (date(2026, 2, 1), date(2026, 4, 30)),
        )

    def test_unknown_range_falls_back_to_current_month(self):
        self.assertEqual(resolve_date_range('fortnight', today=self.today), (date(2026, 3, 1), date(2026, 3, 31)))

    def test_invalid_anchor_raises(self):
        with self.assertRaises(ValueError):
            resolve_date_range('month', 'not-a-date', None, today=self.today)


class BillingTests(unittest.TestCase):
    def test_missing_or_zero_rate_uses_default(self):
        revenue, contributions = bill_lesson(
            lesson(9, '2026-03-01', '09:00', '1h', [BRUNO, {'id': 3, 'hourlyRate': 0}]),
            default_rate=30.0,
        )
        self.assertEqual(revenue, 60.0)
        self.assertEqual([item['hourlyRate'] for item in contributions], [30.0, 30.0])

    def test_student_listed_twice_is_billed_once(self):
        revenue, contributions = bill_lesson(lesson(9, '2026-03-01', '09:00', '1h', [ALICE, ALICE]))
        self.assertEqual(revenue, 40.0)
        self.assertEqual(len(contributions), 1)


class SummaryTests(unittest.TestCase):
    def test_past_and_projected_split_on_start_time(self):
        summary = summarize_revenue(LESSONS, now=NOW)
        self.assertAlmostEqual(summary['totalRevenue'], 60 + 45 + 40)
        self.assertAlmostEqual(summary['projectedRevenue'], 60)
        self.assertEqual(summary['lessonsCompleted'], 2)
        self.assertEqual(summary['revenueByPeriod'], {'2026-03-10': 105.0, '2026-03-11': 100.0})
        self.assertNotIn('revenueByMonth', summary)

    def test_average_rate_is_mean_of_billed_rates(self):
        summary = summarize_revenue(LESSONS, now=NOW)
        self.assertAlmostEqual(summary['averageHourlyRate'], (40 + 30 + 40) / 3)

    def test_empty_input(self):
        summary = summarize_revenue([], now=NOW)
        self.assertEqual(summary['totalRevenue'], 0.0)
        self.assertEqual(summary['averageHourlyRate'], 0.0)
        self.assertEqual(summary['lessonDetails'], [])

    def test_student_filter_counts_only_that_student(self):
        summary = summarize_revenue(LESSONS, now=NOW, student_id=2)
        self.assertAlmostEqual(summary['totalRevenue'], 45)
        self.assertAlmostEqual(summary['projectedRevenue'], 60)

    def test_lesson_details_carry_course_title(self):
        details = summarize_revenue(LESSONS, now=NOW)['lessonDetails']
        self.assertEqual(details[0]['courseTitle'], 'Maths')
        self.assertEqual(details[1]['courseTitle'], 'Unassigned course')
        self.assertTrue(details[1]['isPast'])
        self.assertFalse(details[2]['isPast'])

    def test_year_range_adds_zero_filled_months(self):
        summary = summarize_revenue(
            LESSONS,
            now=NOW,
            range_name='year',
            range_start=date(2026, 1, 1),
            range_end=date(2026, 12, 31),
        )
        by_month = summary['revenueByMonth']
        self.assertEqual(len(by_month), 12)
        self.assertAlmostEqual(by_month['2026-03'], 205.0)
        self.assertEqual(by_month['2026-01'], 0.0)


class ExportAndDashboardTests(unittest.TestCase):
    def test_export_skips_lessons_without_matching_student(self):
        total, lines = build_export_lines(LESSONS, student_id=1)
        self.assertEqual([line['id'] for line in lines], [1, 2])
        self.assertAlmostEqual(total, 60 + 40)
        self.assertEqual(lines[0]['student']['firstName'], 'Alice')

    def test_export_without_filter_keeps_every_billed_lesson(self):
        total, lines = build_export_lines(LESSONS)
        self.assertEqual(len(lines), 3)
        self.assertAlmostEqual(total, 205.0)

    def test_dashboard_counts(self):
        stats = build_dashboard_stats(LESSONS, now=NOW, total_students=2, total_courses=1)
        self.assertEqual(stats['totalLessons'], 3)
        self.assertEqual(stats['todayLessons'], 2)
        self.assertEqual(stats['upcomingLessons'], 1)
        self.assertAlmostEqual(stats['totalRevenue'], 145.0)


if __name__ == '__main__':
    unittest.main()
