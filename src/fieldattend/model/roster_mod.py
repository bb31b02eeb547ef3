"""Reference tables downloaded from the server.

Class assignments, students, periods, and activities are written only by a
bulk refresh (see fieldattend.model.refresh). This module reads them back for
the capture screens. Empty tables simply mean no data has been downloaded yet.
"""

import dataclasses
import datetime
import sqlite3
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from fieldattend.model import database


@dataclasses.dataclass
class ClassAssignment:
    """A municipality, center, and grade the teacher works with."""

    municipality: str
    center: str
    grade: str

    def insert(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            INSERT INTO class_assignments (municipality, center, grade)
                 VALUES (:municipality, :center, :grade);
            """,
            dataclasses.asdict(self),
        )

    @staticmethod
    def get_all(dbase: "database.DBase") -> list["ClassAssignment"]:
        """Retrieve class assignments in download order."""
        query = """
                SELECT municipality, center, grade
                  FROM class_assignments
              ORDER BY assignment_id;
        """
        conn = dbase.get_db_connection(as_dict=True)
        assignments = [ClassAssignment(**row) for row in conn.execute(query)]
        conn.close()
        return assignments


@dataclasses.dataclass
class Student:
    """A child or adolescent on the teacher's roster."""

    student_id: str
    full_name: str
    gender: str
    grade: str
    center: str
    municipality: str

    def insert(self, conn: sqlite3.Connection) -> None:
        # A repeated student_id in one snapshot keeps the last record.
        conn.execute(
            """
            INSERT OR REPLACE INTO students
                        (student_id, full_name, gender, grade, center,
                        municipality)
                 VALUES (:student_id, :full_name, :gender, :grade, :center,
                        :municipality);
            """,
            dataclasses.asdict(self),
        )

    @staticmethod
    def get_for_class(
        dbase: "database.DBase", center: str, grade: str
    ) -> list["Student"]:
        """Retrieve students in a class, sorted by name.

        Center and grade are compared after trimming whitespace and converting
        to upper case, because the server is not consistent about either.
        """
        query = """
                SELECT student_id, full_name, gender, grade, center, municipality
                  FROM students
                 WHERE TRIM(UPPER(center)) = TRIM(UPPER(:center))
                   AND TRIM(UPPER(grade)) = TRIM(UPPER(:grade))
              ORDER BY full_name;
        """
        conn = dbase.get_db_connection(as_dict=True)
        students = [
            Student(**row)
            for row in conn.execute(query, {"center": center, "grade": grade})
        ]
        conn.close()
        return students

    @staticmethod
    def get_by_id(dbase: "database.DBase", student_id: str) -> "Student | None":
        """Retrieve a Student object by student_id."""
        query = """
                SELECT student_id, full_name, gender, grade, center, municipality
                  FROM students
                 WHERE student_id = ?;
        """
        conn = dbase.get_db_connection(as_dict=True)
        result = conn.execute(query, (student_id,)).fetchone()
        conn.close()
        return None if result is None else Student(**result)


@dataclasses.dataclass
class Period:
    """A reporting window, such as a school term."""

    period_id: int
    name: str
    start_date: str
    end_date: str

    def insert(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO periods (period_id, name, start_date, end_date)
                 VALUES (:period_id, :name, :start_date, :end_date);
            """,
            dataclasses.asdict(self),
        )

    def contains(self, day: datetime.date) -> bool:
        """True if day falls within the period.

        Periods with unparseable dates never contain any day.
        """
        try:
            start = datetime.date.fromisoformat(self.start_date)
            end = datetime.date.fromisoformat(self.end_date)
        except ValueError:
            return False
        return start <= day <= end

    @staticmethod
    def get_all(dbase: "database.DBase") -> list["Period"]:
        """Retrieve periods, newest first."""
        query = """
                SELECT period_id, name, start_date, end_date
                  FROM periods
              ORDER BY period_id DESC;
        """
        conn = dbase.get_db_connection(as_dict=True)
        periods = [Period(**row) for row in conn.execute(query)]
        conn.close()
        return periods


@dataclasses.dataclass
class Activity:
    """An activity within a period at which attendance is signed."""

    activity_id: int
    period_id: int
    name: str
    activity_type: str
    logframe_tag: str

    def insert(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO activities
                        (activity_id, period_id, name, activity_type, logframe_tag)
                 VALUES (:activity_id, :period_id, :name, :activity_type,
                        :logframe_tag);
            """,
            dataclasses.asdict(self),
        )

    @staticmethod
    def get_for_period(dbase: "database.DBase", period_id: int) -> list["Activity"]:
        """Retrieve the activities of a period."""
        query = """
                SELECT activity_id, period_id, name, activity_type, logframe_tag
                  FROM activities
                 WHERE period_id = ?
              ORDER BY activity_id;
        """
        conn = dbase.get_db_connection(as_dict=True)
        activities = [Activity(**row) for row in conn.execute(query, (period_id,))]
        conn.close()
        return activities

    @staticmethod
    def get_by_id(dbase: "database.DBase", activity_id: int) -> "Activity | None":
        """Retrieve a single activity."""
        query = """
                SELECT activity_id, period_id, name, activity_type, logframe_tag
                  FROM activities
                 WHERE activity_id = ?;
        """
        conn = dbase.get_db_connection(as_dict=True)
        result = conn.execute(query, (activity_id,)).fetchone()
        conn.close()
        return None if result is None else Activity(**result)
