"""
Universal email service for sending transactional emails.
Provides a centralized way to send HTML emails with consistent branding.
"""
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string
from django.conf import settings
from typing import Optional, Dict, Any


class EmailService:
    """Service for sending transactional emails with consistent templates."""

    @staticmethod
    def get_site_domain() -> str:
        """
        Get the public site URL used in email links.

        Returns:
            str: FRONTEND_URL without trailing slash (e.g. 'http://localhost:5173')
        """
        site_domain = getattr(settings, 'FRONTEND_URL', '') or 'http://localhost:5173'
        if not site_domain.startswith(('http://', 'https://')):
            site_domain = f'https://{site_domain}'
        return site_domain.rstrip('/')

    @staticmethod
    def send_email(
        subject: str,
        recipient_email: str,
        template_name: str,
        context: Optional[Dict[str, Any]] = None,
        from_email: Optional[str] = None,
        fail_silently: bool = False,
    ) -> bool:
        """
        Send an HTML email using a template.

        Args:
            subject: Email subject line
            recipient_email: Recipient's email address
            template_name: Name of the email template (without .html extension)
            context: Dictionary of context variables for the template
            from_email: Sender email (defaults to DEFAULT_FROM_EMAIL)
            fail_silently: Whether to fail silently on errors

        Returns:
            bool: True if email was sent successfully, False otherwise
        """
        if context is None:
            context = {}

        if from_email is None:
            from_email = settings.DEFAULT_FROM_EMAIL

        context.setdefault('site_domain', EmailService.get_site_domain())
        context.setdefault('site_name', 'Course Marketplace')

        html_content = render_to_string(
            f'emails/{template_name}.html',
            context
        )

        msg = EmailMultiAlternatives(
            subject=subject,
            body='',  # Plain text version (empty, we only send HTML)
            from_email=from_email,
            to=[recipient_email],
        )
        msg.attach_alternative(html_content, "text/html")

        try:
            msg.send(fail_silently=fail_silently)
            return True
        except Exception:
            if not fail_silently:
                raise
            return False

    @staticmethod
    def send_purchase_confirmation_email(
        recipient_email: str,
        student_name: str,
        course_title: str,
        fail_silently: bool = False,
    ) -> bool:
        """
        Send the "Course Purchase Successful!" email after a new enrollment.

        Args:
            recipient_email: Student email taken from payment metadata
            student_name: Student display name taken from payment metadata
            course_title: Course title captured when the payment was started

        Returns:
            bool: True if email was sent successfully
        """
        context = {
            'user_name': student_name or 'there',
            'course_title': course_title,
            'my_courses_url': f"{EmailService.get_site_domain()}/my-courses",
        }

        return EmailService.send_email(
            subject="Course Purchase Successful!",
            recipient_email=recipient_email,
            template_name='course_purchase',
            context=context,
            fail_silently=fail_silently,
        )
