"""
URL mappings for the clinic records API.

Trailing slashes are deliberately omitted (``APPEND_SLASH = False``) to
match the front-end endpoint table.
"""
from django.urls import path

from .auth_views import login_view, signup_view, jwt_refresh_view, jwt_logout_view
from .views import appointments, dashboard, health, internships, notifications, patients, treatments, users

urlpatterns = [
    # Auth
    path('api/auth/login', login_view, name='login_view'),
    path('api/auth/signup', signup_view, name='signup_view'),
    path('api/auth/refresh', jwt_refresh_view, name='jwt_refresh_view'),
    path('api/auth/logout', jwt_logout_view, name='jwt_logout_view'),

    # Users
    path('api/user/profile', users.my_profile, name='my_profile'),
    path('api/users', users.list_users, name='list_users'),
    path('api/users/<int:user_id>/approve', users.approve_user, name='approve_user'),
    path('api/users/<int:user_id>/profile', users.update_user_profile, name='update_user_profile'),
    path('api/admin/doctors', users.create_doctor, name='create_doctor'),

    # Patients
    path('api/patients', patients.list_patients, name='list_patients'),
    path('api/patients/create', patients.create_patient, name='create_patient'),
    path('api/patients/<int:patient_id>', patients.patient_detail, name='patient_detail'),
    path('api/patients/<int:patient_id>/approve', patients.approve_patient, name='approve_patient'),
    path('api/patients/<int:patient_id>/reject', patients.reject_patient, name='reject_patient'),
    path('api/patients/<int:patient_id>/treatments', treatments.propose_treatment, name='propose_treatment'),

    # Treatments
    path('api/treatments', treatments.list_treatments, name='list_treatments'),
    path('api/treatments/<int:treatment_id>/approve', treatments.approve_treatment, name='approve_treatment'),
    path('api/treatments/<int:treatment_id>/reject', treatments.reject_treatment, name='reject_treatment'),
    path('api/treatments/<int:treatment_id>/status', treatments.treatment_status, name='treatment_status'),
    path('api/treatments/<int:treatment_id>/supervisor', treatments.treatment_supervisor, name='treatment_supervisor'),

    # Internship periods
    path('api/internships', internships.list_internships, name='list_internships'),
    path('api/internships/create', internships.create_internship, name='create_internship'),
    path('api/internships/<int:internship_id>', internships.update_internship, name='update_internship'),
    path('api/internships/<int:internship_id>/status', internships.internship_status, name='internship_status'),
    path('api/internships/<int:internship_id>/approve', internships.approve_internship, name='approve_internship'),
    path('api/internships/<int:internship_id>/delete', internships.delete_internship, name='delete_internship'),

    # Appointments
    path('api/appointments', appointments.list_appointments, name='list_appointments'),
    path('api/patients/<int:patient_id>/appointments', appointments.schedule_appointment, name='schedule_appointment'),
    path('api/appointments/<int:appointment_id>/reschedule', appointments.reschedule_appointment,
         name='reschedule_appointment'),
    path('api/appointments/<int:appointment_id>/status', appointments.appointment_status, name='appointment_status'),
    path('api/appointments/<int:appointment_id>/supervisor', appointments.appointment_supervisor,
         name='appointment_supervisor'),

    # Notifications
    path('api/notifications', notifications.list_notifications, name='list_notifications'),
    path('api/notifications/unread-count', notifications.unread_count, name='unread_count'),
    path('api/notifications/read-all', notifications.mark_all_read, name='mark_all_read'),
    path('api/notifications/<int:notification_id>/read', notifications.mark_read, name='mark_read'),
    path('api/notifications/<int:notification_id>/delete', notifications.delete_notification, name='delete_notification'),

    # Dashboard & health
    path('api/dashboard', dashboard.dashboard, name='dashboard'),
    path('healthz', health.healthz, name='healthz'),
]
