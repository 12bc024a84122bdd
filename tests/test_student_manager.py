def test_create_student_issues_token(students):
    result = students.create_student({
        'student_name': ' Jane Doe ', 'student_email': 'jane@school.edu', 'roll_no': 'R001'
    })

    assert result['success']
    stored = students.get_student(result['student_id'])
    assert stored['student_name'] == 'Jane Doe'
    assert stored['qr_token'] == result['qr_token']
    assert stored['qr_token'] not in (stored['id'], stored['roll_no'])


def test_create_student_validation(students):
    missing = students.create_student({'student_name': 'Jane', 'student_email': 'jane@school.edu'})
    assert missing == {'success': False, 'error': 'Missing required field: roll_no'}

    bad_email = students.create_student({
        'student_name': 'Jane', 'student_email': 'not-an-email', 'roll_no': 'R1'
    })
    assert bad_email['error'] == 'Invalid email address format'
    assert students.get_student_count() == 0


def test_reissue_token(students, make_student):
    student = make_student()

    result = students.reissue_token(student['id'])

    assert result['success']
    assert result['qr_token'] != student['qr_token']
    assert students.get_student(student['id'])['qr_token'] == result['qr_token']
    assert students.reissue_token('missing') == {'success': False, 'error': 'Student not found'}


def test_update_student_keeps_token(students, make_student):
    student = make_student('Jane Doe')

    result = students.update_student(student['id'], {'student_name': 'Jane Smith', 'qr_token': 'x'})

    assert result['success']
    stored = students.get_student(student['id'])
    assert stored['student_name'] == 'Jane Smith'
    assert stored['qr_token'] == student['qr_token']

    assert students.update_student(student['id'], {'student_email': 'bad'})['success'] is False
    assert students.update_student('missing', {'roll_no': 'R9'})['error'] == 'Student not found'


def test_listing_and_search(students, make_student):
    first = make_student('Alice Smith', roll_no='CS-01')
    second = make_student('Bob Jones', roll_no='CS-02')

    assert [s['id'] for s in students.get_all_students()] == [second['id'], first['id']]
    assert [s['id'] for s in students.search_students('smith')] == [first['id']]
    assert len(students.search_students('cs-0')) == 2
    assert students.get_student_count() == 2


def test_import_from_csv_with_aliases(students):
    content = (
        'name,email,roll\n'
        'Alice,alice@school.edu,R1\n'
        '\n'
        'Bob,not-an-email,R2\n'
        'Carol,carol@school.edu,R3\n'
    )

    result = students.import_students_from_csv(content)

    assert result['import_method'] == 'csv'
    assert result['total_students'] == 3
    assert result['created'] == 2
    assert result['failed'] == 1
    assert result['success'] is False
    assert result['errors'][0]['roll_no'] == 'R2'
    assert students.get_student_count() == 2


def test_import_with_no_rows(students):
    result = students.import_students_from_csv('student_name,student_email,roll_no\n')
    assert result == {'success': False, 'error': 'No student rows found in CSV'}


def test_create_student_accepts_numeric_fields(students):
    result = students.create_student({
        'student_name': 'Jane Doe', 'student_email': 'jane@school.edu', 'roll_no': 12
    })

    assert result['success']
    assert students.get_student(result['student_id'])['roll_no'] == '12'
