import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID
import asyncpg
from datetime import date, datetime, time
from ..models.db_models import (
    Principal, Role, Student, Staff, Course, ClassSchedule, Exam, ExamResult, ExamResultView,
    CourseAttendance, GeneralQRCode, GeneralAttendance, AttendanceReportRow,
    Certificate, CertificateVerification, Notification,
)

logger = logging.getLogger(__name__)


def _affected_rows(status: str) -> int:
    """Turns an asyncpg command tag such as 'UPDATE 1' into the row count."""
    try:
        return int(str(status).split()[-1])
    except (ValueError, IndexError):
        return 0


class AsyncPostgresClient:
    """
    PostgreSQL client owning every query the portal runs.
    """
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    # ===== Principals =====

    async def get_principal(self, user_id: UUID) -> Optional[Principal]:
        """Returns the profile joined with its role, or None when either is missing."""
        query = """
            SELECT p.id, p.email, p.full_name, r.role
            FROM profiles p
            JOIN user_roles r ON r.user_id = p.id
            WHERE p.id = $1;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, user_id)
            return Principal(**record) if record else None

    async def get_user_role(self, user_id: UUID) -> Optional[Role]:
        query = "SELECT role FROM user_roles WHERE user_id = $1;"
        async with self._pool.acquire() as connection:
            role = await connection.fetchval(query, user_id)
            return Role(role) if role else None

    async def get_student_by_user(self, user_id: UUID) -> Optional[Student]:
        query = "SELECT id, user_id, student_number, enrollment_date, registered_by FROM students WHERE user_id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, user_id)
            return Student(**record) if record else None

    async def get_staff_by_user(self, user_id: UUID) -> Optional[Staff]:
        query = "SELECT id, user_id, department, position, hire_date FROM staff WHERE user_id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, user_id)
            return Staff(**record) if record else None

    async def provision_user(
        self,
        principal: Principal,
        registered_by: UUID,
        today: date,
        student_number: Optional[str] = None,
        staff_position: Optional[str] = None,
        staff_department: Optional[str] = None,
        enroll_course_ids: Iterable[UUID] = (),
        assign_course_ids: Iterable[UUID] = (),
    ) -> Optional[UUID]:
        """
        Writes profile, role and domain record of a new principal in one transaction.

        A student_number creates a 'students' row plus one active enrollment per
        enroll_course_ids entry; a staff_position creates a 'staff' row and makes it the
        instructor of every assign_course_ids entry. Either every row is written or none.
        Returns the id of the created domain record, if any.
        """
        enroll_course_ids = list(enroll_course_ids)
        assign_course_ids = list(assign_course_ids)
        domain_record_id: Optional[UUID] = None

        async with self._pool.acquire() as connection:
            async with connection.transaction():
                await connection.execute(
                    """
                    INSERT INTO profiles (id, email, full_name)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (id) DO UPDATE SET full_name = EXCLUDED.full_name, updated_at = now();
                    """,
                    principal.id, principal.email, principal.full_name
                )
                await connection.execute(
                    """
                    INSERT INTO user_roles (user_id, role)
                    VALUES ($1, $2)
                    ON CONFLICT (user_id) DO UPDATE SET role = EXCLUDED.role;
                    """,
                    principal.id, principal.role.value
                )

                if student_number is not None:
                    domain_record_id = await connection.fetchval(
                        """
                        INSERT INTO students (user_id, student_number, enrollment_date, registered_by)
                        VALUES ($1, $2, $3, $4)
                        RETURNING id;
                        """,
                        principal.id, student_number, today, registered_by
                    )
                    if enroll_course_ids:
                        await connection.executemany(
                            """
                            INSERT INTO student_courses (student_id, course_id, status, enrollment_date)
                            VALUES ($1, $2, 'active', $3);
                            """,
                            [(domain_record_id, course_id, today) for course_id in enroll_course_ids]
                        )

                elif staff_position is not None:
                    domain_record_id = await connection.fetchval(
                        """
                        INSERT INTO staff (user_id, position, department, hire_date)
                        VALUES ($1, $2, $3, $4)
                        RETURNING id;
                        """,
                        principal.id, staff_position, staff_department, today
                    )
                    if assign_course_ids:
                        await connection.execute(
                            "UPDATE courses SET instructor_id = $1, updated_at = now() WHERE id = ANY($2::uuid[]);",
                            domain_record_id, assign_course_ids
                        )

        return domain_record_id

    async def get_incomplete_profiles(self) -> List[Tuple[UUID, str]]:
        """Profiles without a role row, i.e. registrations that never completed."""
        query = """
            SELECT p.id, p.email
            FROM profiles p
            LEFT JOIN user_roles r ON r.user_id = p.id
            WHERE r.user_id IS NULL;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query)
            return [(record["id"], record["email"]) for record in records]

    async def delete_profile(self, user_id: UUID) -> int:
        """Deletes a profile; role, domain record and attendance rows cascade."""
        async with self._pool.acquire() as connection:
            result = await connection.execute("DELETE FROM profiles WHERE id = $1;", user_id)
            return _affected_rows(result)

    # ===== Courses, schedules, exams =====

    async def get_course(self, course_id: UUID) -> Optional[Course]:
        query = """
            SELECT id, name, description, duration_weeks, max_students, instructor_id, created_at
            FROM courses WHERE id = $1;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, course_id)
            return Course(**record) if record else None

    async def get_existing_course_ids(self, course_ids: List[UUID]) -> Set[UUID]:
        if not course_ids:
            return set()
        query = "SELECT id FROM courses WHERE id = ANY($1::uuid[]);"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, course_ids)
            return {record["id"] for record in records}

    async def add_course(self, name: str, description: Optional[str], duration_weeks: Optional[int],
                         max_students: Optional[int], instructor_id: Optional[UUID]) -> Course:
        query = """
            INSERT INTO courses (name, description, duration_weeks, max_students, instructor_id)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING id, name, description, duration_weeks, max_students, instructor_id, created_at;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, name, description, duration_weeks, max_students, instructor_id)
            return Course(**record)

    async def get_courses(self) -> List[Course]:
        query = """
            SELECT id, name, description, duration_weeks, max_students, instructor_id, created_at
            FROM courses ORDER BY name;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query)
            return [Course(**record) for record in records]

    async def get_courses_for_student(self, student_id: UUID) -> List[Course]:
        query = """
            SELECT c.id, c.name, c.description, c.duration_weeks, c.max_students, c.instructor_id, c.created_at
            FROM courses c
            JOIN student_courses sc ON sc.course_id = c.id
            WHERE sc.student_id = $1 AND sc.status = 'active'
            ORDER BY c.name;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, student_id)
            return [Course(**record) for record in records]

    async def get_courses_for_instructor(self, staff_id: UUID) -> List[Course]:
        query = """
            SELECT id, name, description, duration_weeks, max_students, instructor_id, created_at
            FROM courses WHERE instructor_id = $1 ORDER BY name;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, staff_id)
            return [Course(**record) for record in records]

    async def add_class_schedule(self, course_id: UUID, day_of_week: int, start_time: time,
                                 end_time: time, room: Optional[str]) -> ClassSchedule:
        query = """
            INSERT INTO class_schedules (course_id, day_of_week, start_time, end_time, room)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING id, course_id, day_of_week, start_time, end_time, room;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, course_id, day_of_week, start_time, end_time, room)
            return ClassSchedule(**record)

    async def add_exam(self, course_id: UUID, title: str, exam_date: Optional[datetime],
                       duration_minutes: Optional[int], total_marks: Optional[int]) -> Exam:
        query = """
            INSERT INTO exams (course_id, title, exam_date, duration_minutes, total_marks)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING id, course_id, title, exam_date, duration_minutes, total_marks;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, course_id, title, exam_date, duration_minutes, total_marks)
            return Exam(**record)

    async def get_exam(self, exam_id: UUID) -> Optional[Exam]:
        query = "SELECT id, course_id, title, exam_date, duration_minutes, total_marks FROM exams WHERE id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, exam_id)
            return Exam(**record) if record else None

    async def upsert_exam_result(self, student_id: UUID, exam_id: UUID, score: float, grade: str) -> ExamResult:
        query = """
            INSERT INTO exam_results (student_id, exam_id, score, grade)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (student_id, exam_id) DO UPDATE SET score = EXCLUDED.score, grade = EXCLUDED.grade
            RETURNING id, student_id, exam_id, score, grade;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, student_id, exam_id, score, grade)
            return ExamResult(**record)

    async def get_exam_results_for_student(self, student_id: UUID) -> List[ExamResultView]:
        query = """
            SELECT er.id, er.student_id, er.exam_id, er.score, er.grade,
                   e.title AS exam_title, e.total_marks, c.name AS course_name
            FROM exam_results er
            JOIN exams e ON e.id = er.exam_id
            JOIN courses c ON c.id = e.course_id
            WHERE er.student_id = $1
            ORDER BY er.created_at DESC;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, student_id)
            return [ExamResultView(**record) for record in records]

    # ===== Per-course attendance =====

    async def get_course_attendance(self, student_id: UUID, course_id: UUID, attendance_date: date) -> Optional[CourseAttendance]:
        query = """
            SELECT id, student_id, course_id, attendance_date, status, qr_code, created_at
            FROM attendance
            WHERE student_id = $1 AND course_id = $2 AND attendance_date = $3;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, student_id, course_id, attendance_date)
            return CourseAttendance(**record) if record else None

    async def add_course_attendance(self, student_id: UUID, course_id: UUID, attendance_date: date,
                                    status: str, qr_code: Optional[str]) -> CourseAttendance:
        """Raises asyncpg.UniqueViolationError when the (student, course, date) row already exists."""
        query = """
            INSERT INTO attendance (student_id, course_id, attendance_date, status, qr_code)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING id, student_id, course_id, attendance_date, status, qr_code, created_at;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, student_id, course_id, attendance_date, status, qr_code)
            return CourseAttendance(**record)

    async def count_course_attendance_for_student(self, student_id: UUID) -> int:
        query = "SELECT count(*) FROM attendance WHERE student_id = $1 AND status = 'present';"
        async with self._pool.acquire() as connection:
            return await connection.fetchval(query, student_id)

    # ===== General QR codes =====

    async def add_general_qr_code(self, code: str, name: str, description: Optional[str], created_by: UUID) -> GeneralQRCode:
        query = """
            INSERT INTO general_qr_codes (code, name, description, created_by)
            VALUES ($1, $2, $3, $4)
            RETURNING id, code, name, description, is_active, created_by, created_at;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, code, name, description, created_by)
            return GeneralQRCode(**record)

    async def get_general_qr_code_by_code(self, code: str) -> Optional[GeneralQRCode]:
        query = """
            SELECT id, code, name, description, is_active, created_by, created_at
            FROM general_qr_codes WHERE code = $1;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, code)
            return GeneralQRCode(**record) if record else None

    async def get_general_qr_codes(self) -> List[GeneralQRCode]:
        query = """
            SELECT id, code, name, description, is_active, created_by, created_at
            FROM general_qr_codes ORDER BY created_at DESC;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query)
            return [GeneralQRCode(**record) for record in records]

    async def set_general_qr_code_active(self, qr_code_id: UUID, is_active: bool) -> Optional[GeneralQRCode]:
        query = """
            UPDATE general_qr_codes SET is_active = $2 WHERE id = $1
            RETURNING id, code, name, description, is_active, created_by, created_at;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, qr_code_id, is_active)
            return GeneralQRCode(**record) if record else None

    # ===== General attendance =====

    async def get_open_general_attendance(self, user_id: UUID, attendance_date: date) -> Optional[GeneralAttendance]:
        """The open session (null check_out_time) of a principal on a day, if any."""
        query = """
            SELECT id, user_id, qr_code_id, user_type, attendance_date, check_in_time, check_out_time
            FROM general_attendance
            WHERE user_id = $1 AND attendance_date = $2 AND check_out_time IS NULL
            ORDER BY check_in_time DESC
            LIMIT 1;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, user_id, attendance_date)
            return GeneralAttendance(**record) if record else None

    async def get_latest_general_attendance(self, user_id: UUID, attendance_date: date) -> Optional[GeneralAttendance]:
        query = """
            SELECT id, user_id, qr_code_id, user_type, attendance_date, check_in_time, check_out_time
            FROM general_attendance
            WHERE user_id = $1 AND attendance_date = $2
            ORDER BY check_in_time DESC
            LIMIT 1;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, user_id, attendance_date)
            return GeneralAttendance(**record) if record else None

    async def get_stale_open_general_attendance(self, user_id: UUID, before_date: date) -> Optional[GeneralAttendance]:
        """The most recent session from an earlier day that was never checked out."""
        query = """
            SELECT id, user_id, qr_code_id, user_type, attendance_date, check_in_time, check_out_time
            FROM general_attendance
            WHERE user_id = $1 AND attendance_date < $2 AND check_out_time IS NULL
            ORDER BY check_in_time DESC
            LIMIT 1;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, user_id, before_date)
            return GeneralAttendance(**record) if record else None

    async def add_general_attendance(self, user_id: UUID, qr_code_id: UUID, user_type: Role,
                                     attendance_date: date, check_in_time: datetime) -> GeneralAttendance:
        """Raises asyncpg.UniqueViolationError when the principal already has an open session that day."""
        query = """
            INSERT INTO general_attendance (user_id, qr_code_id, user_type, attendance_date, check_in_time)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING id, user_id, qr_code_id, user_type, attendance_date, check_in_time, check_out_time;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, user_id, qr_code_id, user_type.value, attendance_date, check_in_time)
            return GeneralAttendance(**record)

    async def close_general_attendance(self, attendance_id: UUID, check_out_time: datetime) -> Optional[GeneralAttendance]:
        """Sets check_out_time once; returns None when the row was already closed."""
        query = """
            UPDATE general_attendance SET check_out_time = $2
            WHERE id = $1 AND check_out_time IS NULL
            RETURNING id, user_id, qr_code_id, user_type, attendance_date, check_in_time, check_out_time;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, attendance_id, check_out_time)
            return GeneralAttendance(**record) if record else None

    async def get_general_attendance_report(self, attendance_date: Optional[date] = None,
                                            user_type: Optional[Role] = None) -> List[AttendanceReportRow]:
        conditions, args = [], []
        if attendance_date is not None:
            args.append(attendance_date)
            conditions.append(f"ga.attendance_date = ${len(args)}")
        if user_type is not None:
            args.append(user_type.value)
            conditions.append(f"ga.user_type = ${len(args)}")
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        query = f"""
            SELECT ga.id, ga.user_id, ga.user_type, ga.attendance_date, ga.check_in_time, ga.check_out_time,
                   COALESCE(q.name, 'Unknown') AS qr_code_name,
                   COALESCE(p.full_name, 'Unknown') AS user_name,
                   COALESCE(p.email, 'Unknown') AS user_email
            FROM general_attendance ga
            LEFT JOIN general_qr_codes q ON q.id = ga.qr_code_id
            LEFT JOIN profiles p ON p.id = ga.user_id
            {where}
            ORDER BY ga.check_in_time DESC;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, *args)
            return [AttendanceReportRow(**record) for record in records]

    async def count_general_attendance_on(self, attendance_date: date) -> int:
        query = "SELECT count(DISTINCT user_id) FROM general_attendance WHERE attendance_date = $1;"
        async with self._pool.acquire() as connection:
            return await connection.fetchval(query, attendance_date)

    # ===== Certificates =====

    async def add_certificate(self, certificate_number: str, student_id: UUID, course_id: UUID,
                              grade: Optional[str], issue_date: date) -> Certificate:
        query = """
            INSERT INTO certificates (certificate_number, student_id, course_id, grade, issue_date)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING id, certificate_number, student_id, course_id, grade, issue_date;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, certificate_number, student_id, course_id, grade, issue_date)
            return Certificate(**record)

    async def get_student(self, student_id: UUID) -> Optional[Student]:
        query = "SELECT id, user_id, student_number, enrollment_date, registered_by FROM students WHERE id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, student_id)
            return Student(**record) if record else None

    async def get_certificate_verification(self, certificate_number: str) -> Optional[CertificateVerification]:
        query = """
            SELECT cert.certificate_number, p.full_name AS student_name, s.student_number,
                   c.name AS course_name, cert.grade, cert.issue_date
            FROM certificates cert
            JOIN students s ON s.id = cert.student_id
            JOIN courses c ON c.id = cert.course_id
            LEFT JOIN profiles p ON p.id = s.user_id
            WHERE cert.certificate_number = $1;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, certificate_number)
            return CertificateVerification(**record) if record else None

    async def get_certificates_for_student(self, student_id: UUID) -> List[Certificate]:
        query = """
            SELECT id, certificate_number, student_id, course_id, grade, issue_date
            FROM certificates WHERE student_id = $1 ORDER BY issue_date DESC;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, student_id)
            return [Certificate(**record) for record in records]

    # ===== Notifications =====

    async def add_notification(self, user_id: UUID, title: str, message: str) -> Notification:
        query = """
            INSERT INTO notifications (user_id, title, message)
            VALUES ($1, $2, $3)
            RETURNING id, user_id, title, message, read, created_at;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, user_id, title, message)
            return Notification(**record)

    async def get_notifications(self, user_id: UUID) -> List[Notification]:
        query = """
            SELECT id, user_id, title, message, read, created_at
            FROM notifications WHERE user_id = $1 ORDER BY created_at DESC;
        """
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, user_id)
            return [Notification(**record) for record in records]

    async def mark_notification_read(self, notification_id: UUID, user_id: UUID) -> int:
        query = "UPDATE notifications SET read = TRUE WHERE id = $1 AND user_id = $2;"
        async with self._pool.acquire() as connection:
            return _affected_rows(await connection.execute(query, notification_id, user_id))

    async def count_unread_notifications(self, user_id: UUID) -> int:
        query = "SELECT count(*) FROM notifications WHERE user_id = $1 AND read = FALSE;"
        async with self._pool.acquire() as connection:
            return await connection.fetchval(query, user_id)

    # ===== Dashboard counters =====

    async def get_portal_counts(self) -> Dict[str, Any]:
        query = """
            SELECT (SELECT count(*) FROM students) AS students,
                   (SELECT count(*) FROM staff) AS staff,
                   (SELECT count(*) FROM courses) AS courses,
                   (SELECT count(*) FROM general_qr_codes WHERE is_active) AS active_general_codes;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query)
            return dict(record)
