from tutordesk.routers import auth, courses, dashboard, lessons, revenue, students, users
