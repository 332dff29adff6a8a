"""
Database models for the clinic records backend.

Users carry a role and an approval flag; patients and treatments move
through an approval workflow, internship periods and appointments
through their own status lifecycles; notifications are per-recipient
rows produced by the fan-out service from jobs queued in the outbox.
"""
from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Custom user model with a clinical role and an approval flag.

    Students and Supervisors register themselves and stay unapproved
    until an Admin or Doctor approves them.  Doctor accounts are only
    created by an Admin and start approved.
    """
    ROLE_STUDENT = 'student'
    ROLE_DOCTOR = 'doctor'
    ROLE_SUPERVISOR = 'supervisor'
    ROLE_ADMIN = 'admin'
    ROLE_CHOICES = [
        (ROLE_STUDENT, 'Intern/Student'),
        (ROLE_DOCTOR, 'Doctor'),
        (ROLE_SUPERVISOR, 'Supervisor'),
        (ROLE_ADMIN, 'Admin'),
    ]
    role = models.CharField(max_length=16, choices=ROLE_CHOICES, default=ROLE_STUDENT, db_index=True)
    is_approved = models.BooleanField(default=False, db_index=True)
    approved_by = models.ForeignKey(
        'self', null=True, blank=True, on_delete=models.SET_NULL, related_name='approved_users'
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    mobile = models.CharField(max_length=32, blank=True)
    university = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=128, blank=True)
    class_year = models.CharField(max_length=32, blank=True)
    working_days = models.JSONField(default=list, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class Patient(models.Model):
    """A patient registered by a Student and reviewed by an approver."""
    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_REJECTED = 'rejected'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
    ]
    first_name = models.CharField(max_length=128)
    last_name = models.CharField(max_length=128)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=32, blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    address = models.TextField(blank=True)
    emergency_contact = models.CharField(max_length=255, blank=True)
    emergency_phone = models.CharField(max_length=32, blank=True)
    medical_history = models.TextField(blank=True)
    allergies = models.TextField(blank=True)
    notes = models.TextField(blank=True)
    last_visit = models.DateField(null=True, blank=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    added_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name='patients_added')
    approved_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='patients_decided'
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['added_by', 'status'], name='patient_owner_status_idx'),
            models.Index(fields=['status', 'created_at'], name='patient_status_created_idx'),
        ]

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __str__(self) -> str:
        return f"{self.full_name} ({self.status})"


class Treatment(models.Model):
    """A treatment proposed by a Student for one Patient.

    ``status`` is the clinical progress and ``approval_status`` the
    review decision; the two axes move independently.
    """
    STATUS_PLANNED = 'planned'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_COMPLETED = 'completed'
    STATUS_CHOICES = [
        (STATUS_PLANNED, 'Planned'),
        (STATUS_IN_PROGRESS, 'In progress'),
        (STATUS_COMPLETED, 'Completed'),
    ]
    APPROVAL_CHOICES = Patient.STATUS_CHOICES
    PRIORITY_CHOICES = [
        ('low', 'Low'),
        ('medium', 'Medium'),
        ('high', 'High'),
    ]
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='treatments')
    student = models.ForeignKey(User, on_delete=models.PROTECT, related_name='treatments')
    supervisor = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='supervised_treatments'
    )
    treatment_type = models.CharField(max_length=128)
    description = models.TextField(blank=True)
    teeth_numbers = models.JSONField(default=list, blank=True)
    priority = models.CharField(max_length=8, choices=PRIORITY_CHOICES, blank=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PLANNED, db_index=True)
    approval_status = models.CharField(
        max_length=16, choices=APPROVAL_CHOICES, default=Patient.STATUS_PENDING, db_index=True
    )
    approved_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='treatments_decided'
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    start_date = models.DateField(null=True, blank=True)
    end_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['student', 'approval_status'], name='treatment_student_appr_idx'),
            models.Index(fields=['patient', 'created_at'], name='treatment_patient_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.treatment_type} for patient={self.patient_id} ({self.approval_status}/{self.status})"


class InternshipPeriod(models.Model):
    """A clinical rotation a Student logs hours against.

    ``pending`` (planned) -> ``in_progress`` -> ``completed`` by the
    Student, then ``approved`` by a Supervisor, Doctor or Admin.
    """
    STATUS_PENDING = 'pending'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_COMPLETED = 'completed'
    STATUS_APPROVED = 'approved'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_IN_PROGRESS, 'In progress'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_APPROVED, 'Approved'),
    ]
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='internship_periods')
    supervisor = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='supervised_internships'
    )
    location = models.CharField(max_length=255)
    round = models.CharField(max_length=64, blank=True)
    start_date = models.DateField()
    end_date = models.DateField()
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    hours_completed = models.PositiveIntegerField(default=0)
    total_required_hours = models.PositiveIntegerField(default=160)
    notes = models.TextField(blank=True)
    approved_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='internships_approved'
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=['user', 'start_date'], name='internship_user_start_idx')]

    def __str__(self) -> str:
        return f"{self.location} {self.start_date}..{self.end_date} user={self.user_id} ({self.status})"


class Appointment(models.Model):
    """A chair booking for one patient, worked by a Student."""
    STATUS_SCHEDULED = 'scheduled'
    STATUS_CONFIRMED = 'confirmed'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_NO_SHOW = 'no_show'
    STATUS_CHOICES = [
        (STATUS_SCHEDULED, 'Scheduled'),
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_NO_SHOW, 'No show'),
    ]
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='appointments')
    student = models.ForeignKey(User, on_delete=models.PROTECT, related_name='appointments')
    supervisor = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='supervised_appointments'
    )
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    start_time = models.DateTimeField()
    end_time = models.DateTimeField()
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_SCHEDULED, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['student', 'start_time'], name='appointment_student_time_idx'),
            models.Index(fields=['supervisor', 'start_time'], name='appointment_super_time_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.title} {self.start_time:%Y-%m-%d %H:%M} ({self.status})"


class Notification(models.Model):
    """One message for exactly one recipient."""
    TYPE_CHOICES = [
        ('info', 'Info'),
        ('warning', 'Warning'),
        ('success', 'Success'),
        ('error', 'Error'),
        ('approval', 'Approval'),
    ]
    ENTITY_CHOICES = [
        ('patient', 'Patient'),
        ('treatment', 'Treatment'),
        ('user', 'User'),
        ('internship', 'Internship'),
        ('appointment', 'Appointment'),
    ]
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notifications')
    title = models.CharField(max_length=255)
    message = models.TextField()
    type = models.CharField(max_length=16, choices=TYPE_CHOICES, default='info')
    is_read = models.BooleanField(default=False)
    # weak reference: the related row may be gone, lookup only
    related_entity_id = models.BigIntegerField(null=True, blank=True)
    related_entity_type = models.CharField(max_length=16, choices=ENTITY_CHOICES, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['user', 'is_read'], name='notification_unread_idx'),
            models.Index(fields=['user', 'created_at'], name='notification_user_time_idx'),
        ]

    def __str__(self) -> str:
        return f"notification {self.id} user={self.user_id} read={self.is_read}"


class NotificationJob(models.Model):
    """Outbox row written in the same transaction as a workflow decision."""
    STATUS_PENDING = 'pending'
    STATUS_RUNNING = 'running'
    STATUS_DONE = 'done'
    STATUS_FAILED = 'failed'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_RUNNING, 'Running'),
        (STATUS_DONE, 'Done'),
        (STATUS_FAILED, 'Failed'),
    ]
    event_type = models.CharField(max_length=64)
    payload = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    attempts = models.PositiveIntegerField(default=0)
    max_attempts = models.PositiveIntegerField(default=5)
    last_error = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [models.Index(fields=['status', 'created_at'], name='job_status_created_idx')]

    def __str__(self) -> str:
        return f"job {self.id} {self.event_type} ({self.status} {self.attempts}/{self.max_attempts})"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.IntegerField(blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='audit_action_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='audit_object_idx'),
        ]
