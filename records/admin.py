"""
Django admin registrations for the records models.

Lets superusers inspect accounts, patients, treatments, internships,
appointments, notifications and the outbox via ``/admin/``.  Decisions made here bypass the
workflow (no notifications, no audit rows); use the API for those.
"""

from django.contrib import admin

from .models import (
    Appointment, AuditEvent, InternshipPeriod, Notification, NotificationJob, Patient, Treatment, User,
)


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'is_approved', 'is_active', 'university', 'date_joined')
    list_filter = ('role', 'is_approved', 'is_active')
    search_fields = ('username', 'first_name', 'last_name', 'email')


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ('id', 'first_name', 'last_name', 'status', 'added_by', 'approved_by', 'created_at')
    list_filter = ('status',)
    search_fields = ('first_name', 'last_name', 'email', 'phone')


@admin.register(Treatment)
class TreatmentAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'treatment_type', 'student', 'status', 'approval_status', 'priority')
    list_filter = ('status', 'approval_status', 'priority')
    search_fields = ('treatment_type', 'patient__first_name', 'patient__last_name', 'student__username')


@admin.register(InternshipPeriod)
class InternshipPeriodAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'location', 'start_date', 'end_date', 'status', 'supervisor', 'hours_completed')
    list_filter = ('status',)
    search_fields = ('location', 'user__username')


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ('id', 'title', 'patient', 'student', 'supervisor', 'start_time', 'end_time', 'status')
    list_filter = ('status',)
    search_fields = ('title', 'patient__first_name', 'patient__last_name', 'student__username')


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'title', 'type', 'is_read', 'created_at')
    list_filter = ('type', 'is_read')
    search_fields = ('title', 'user__username')


@admin.register(NotificationJob)
class NotificationJobAdmin(admin.ModelAdmin):
    list_display = ('id', 'event_type', 'status', 'attempts', 'max_attempts', 'created_at', 'processed_at')
    list_filter = ('status', 'event_type')


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('action', 'user', 'object_type', 'object_id', 'created_at')
    list_filter = ('action', 'object_type')
