"""Query layer configuration: staleness, table mapping and empty-state copy"""

# Stale time (seconds) per domain. Domains not listed use settings.QUERY_STALE_TIME.
STALE_TIMES = {
    # Directory data - changes infrequently
    "student": 300,
    "teacher": 300,
    "parent": 300,
    "class": 300,
    "subject": 600,
    "lesson": 300,

    # Coursework - moderately dynamic
    "assignment": 120,
    "exam": 120,
    "result": 120,
    "attendance": 60,

    # Calendar and notices - refreshed by realtime pushes too
    "event": 120,
    "announcement": 60,
}

# Backend table name -> cache domain, used by realtime change notifications
TABLE_DOMAINS = {
    "Student": "student",
    "Teacher": "teacher",
    "Parent": "parent",
    "Class": "class",
    "Subject": "subject",
    "Lesson": "lesson",
    "Assignment": "assignment",
    "Exam": "exam",
    "Result": "result",
    "Attendance": "attendance",
    "Event": "event",
    "Announcement": "announcement",
}

# Empty-state messages shown when a list has no rows, per domain and role.
EMPTY_MESSAGES = {
    "student": {
        "teacher": "No tienes estudiantes asignados.",
        "parent": "No hay estudiantes asignados a tu cuenta.",
    },
    "teacher": {
        "student": "No hay profesores para tu clase.",
        "parent": "No hay profesores para las clases de tus estudiantes.",
    },
    "class": {
        "teacher": "No eres supervisor de ninguna clase.",
        "student": "No tienes una clase asignada.",
        "parent": "No tienes estudiantes asignados para ver sus clases.",
    },
    "subject": {
        "teacher": "No tienes asignaturas asignadas.",
        "student": "No tienes asignaturas asignadas a tu clase.",
        "parent": "No hay asignaturas para las clases de tus estudiantes.",
    },
    "lesson": {
        "teacher": "No tienes lecciones asignadas.",
        "student": "No tienes lecciones asignadas a tu clase.",
        "parent": "No tienes estudiantes asignados.",
    },
    "assignment": {
        "teacher": "No tienes lecciones asignadas para ver tareas.",
        "student": "No hay tareas asignadas para tu clase.",
        "parent": "No tienes estudiantes asignados para ver sus tareas.",
    },
    "exam": {
        "teacher": "No tienes lecciones asignadas para ver exámenes.",
        "student": "No hay exámenes para tu clase.",
        "parent": "No tienes estudiantes asignados para ver sus exámenes.",
    },
    "result": {
        "teacher": "No hay resultados para tus lecciones.",
        "student": "No tienes resultados registrados.",
        "parent": "No tienes estudiantes asignados para ver sus resultados.",
    },
    "attendance": {
        "teacher": "No tienes lecciones asignadas para gestionar asistencia.",
        "student": "No tienes registros de asistencia.",
        "parent": "No tienes estudiantes asignados para ver su asistencia.",
    },
    "parent": {
        "teacher": "No hay padres para los estudiantes de tus clases.",
        "student": "No tienes un padre asignado.",
    },
    "event": {
        "parent": "No tienes estudiantes asignados para ver sus eventos.",
    },
    "announcement": {
        "parent": "No tienes estudiantes asignados para ver sus anuncios.",
    },
}

# Plural labels for the generic "nothing found" message
DOMAIN_LABELS = {
    "student": "estudiantes",
    "teacher": "profesores",
    "parent": "padres",
    "class": "clases",
    "subject": "asignaturas",
    "lesson": "lecciones",
    "assignment": "tareas",
    "exam": "exámenes",
    "result": "resultados",
    "attendance": "registros de asistencia",
    "event": "eventos",
    "announcement": "anuncios",
}

NOT_FOUND_MESSAGE = "No se encontraron {label}."
