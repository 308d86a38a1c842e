"""Builds the verification, password reset and unlock messages."""

from dataclasses import dataclass
from typing import Optional

from ..domain.models import EmailTemplate


@dataclass(frozen=True, slots=True)
class ComposedEmail:
    template: EmailTemplate
    subject: str
    body_text: str
    body_html: Optional[str]


class EmailComposer:
    """Renders transactional emails with links into the frontend."""

    def __init__(self, base_url: str, product_name: str = "Jearch") -> None:
        self.base_url = base_url.rstrip("/")
        self.product_name = product_name

    def verification(self, verification_token: str) -> ComposedEmail:
        """
        Email asking the user to confirm their address.

        Args:
            verification_token: Token redeemed by ``/api/users/verify-email``

        Returns:
            Subject and bodies for the verification template
        """
        url = f"{self.base_url}/auth/verify-email?token={verification_token}"
        return self._compose(
            EmailTemplate.VERIFICATION,
            subject=f"Verify your email - {self.product_name}",
            heading=f"Welcome to {self.product_name}!",
            paragraph="Thanks for signing up. Confirm your email address to start building your profile.",
            action_label="Verify email",
            url=url,
            footer="This link expires in 24 hours. If you did not create an account, you can ignore this email.",
        )

    def password_reset(self, reset_token: str) -> ComposedEmail:
        url = f"{self.base_url}/auth/reset-password?token={reset_token}"
        return self._compose(
            EmailTemplate.PASSWORD_RESET,
            subject=f"Reset your password - {self.product_name}",
            heading="Password reset requested",
            paragraph="Someone asked to reset the password for your account. Use the link below to choose a new one.",
            action_label="Reset password",
            url=url,
            footer="This link expires in 1 hour. If you did not request a reset, you can ignore this email.",
        )

    def unlock(self, unlock_token: str, retry_after_seconds: Optional[int]) -> ComposedEmail:
        url = f"{self.base_url}/auth/unlock?token={unlock_token}"
        wait = ""
        if retry_after_seconds:
            minutes = max(1, (retry_after_seconds + 59) // 60)
            wait = f" It will unlock on its own in about {minutes} minute(s)."
        return self._compose(
            EmailTemplate.UNLOCK,
            subject=f"Your account has been locked - {self.product_name}",
            heading="Sign-in temporarily locked",
            paragraph=(
                "We blocked sign-in to your account after several failed attempts." + wait
                + " If it was you, unlock it now with the link below."
            ),
            action_label="Unlock my account",
            url=url,
            footer="If you did not try to sign in, consider resetting your password.",
        )

    def _compose(
        self,
        template: EmailTemplate,
        *,
        subject: str,
        heading: str,
        paragraph: str,
        action_label: str,
        url: str,
        footer: str,
    ) -> ComposedEmail:
        html_body = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
                <div style="background-color: #0f172a; padding: 30px; border-radius: 10px; text-align: center;">
                    <h1 style="color: #93c5fd; margin: 0;">{self.product_name}</h1>
                </div>

                <div style="padding: 30px 0;">
                    <h2 style="color: #1e293b; margin-bottom: 20px;">{heading}</h2>

                    <p style="color: #475569; line-height: 1.6; margin-bottom: 20px;">{paragraph}</p>

                    <div style="text-align: center; margin: 30px 0;">
                        <a href="{url}"
                           style="background-color: #3b82f6; color: white; padding: 15px 30px;
                                  text-decoration: none; border-radius: 5px; display: inline-block;
                                  font-weight: bold;">
                            {action_label}
                        </a>
                    </div>

                    <p style="color: #64748b; font-size: 14px; margin-top: 30px;">{footer}</p>
                </div>
            </body>
        </html>
        """

        text_body = f"""
        {self.product_name} - {heading}

        {paragraph}

        {action_label}: {url}

        {footer}
        """

        return ComposedEmail(template=template, subject=subject, body_text=text_body, body_html=html_body)
