"""Email templates for codeElevateX.

Each ``render_*`` function returns ``(html, plain_text)``. Brand colors:
- Primary: #667EEA
- Secondary: #764BA2
- Text: #333333
- Muted: #999999
"""

from datetime import datetime
from decimal import Decimal
from html import escape


# ==============================================================================
# Base Template
# ==============================================================================

BASE_TEMPLATE = """
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title} - codeElevateX</title>
</head>
<body style="margin: 0; padding: 0; font-family: Arial, sans-serif; background-color: #F5F5F5;">
  <div style="max-width: 600px; margin: 0 auto; background-color: #FFFFFF; padding: 20px;">
    <div style="text-align: center; margin-bottom: 30px;">
      <h1 style="color: #667EEA; margin: 0;">codeElevateX</h1>
    </div>
    {content}
    <div style="text-align: center; margin: 30px 0;">
      <a href="{action_url}"
         style="display: inline-block; background: linear-gradient(135deg, #667EEA 0%, #764BA2 100%); color: #FFFFFF; padding: 12px 30px; text-decoration: none; border-radius: 5px; font-weight: bold;">
        {action_label}
      </a>
    </div>
    <hr style="margin: 20px 0; border: none; border-top: 1px solid #DDDDDD;">
    <p style="font-size: 12px; color: #999999;">
      If you have any questions, please contact our support team.<br>
      &copy; {year} codeElevateX. All rights reserved.
    </p>
  </div>
</body>
</html>
"""

DETAIL_ROW = """
<tr>
  <td style="padding: 8px 0; color: #666666;">{label}</td>
  <td style="padding: 8px 0; text-align: right; color: #333333; font-weight: bold;">{value}</td>
</tr>
"""


def _details(title: str, rows: list[tuple[str, str]]) -> str:
    body = "".join(
        DETAIL_ROW.format(label=escape(label), value=escape(value)) for label, value in rows
    )
    return (
        '<div style="background: #F9F9F9; border-left: 4px solid #667EEA; padding: 15px; '
        'margin: 20px 0; border-radius: 5px;">'
        f'<h3 style="margin: 0 0 15px 0; color: #333333;">{escape(title)}</h3>'
        f'<table style="width: 100%; border-collapse: collapse;">{body}</table></div>'
    )


# ==============================================================================
# Template: Payment Receipt
# ==============================================================================

PAYMENT_RECEIPT_CONTENT = """
<p style="font-size: 16px; color: #333333; line-height: 1.6;">Hi <strong>{user_name}</strong>,</p>
<p style="font-size: 16px; color: #333333; line-height: 1.6;">
  Your payment was received successfully. Thank you for your purchase!
</p>
{details}
"""


def render_payment_receipt(
    user_name: str,
    amount: Decimal,
    currency: str,
    payment_id: str,
    order_id: str,
    course_title: str | None,
    dashboard_url: str,
) -> tuple[str, str]:
    """Render the payment receipt sent after a verified payment.

    Returns:
        Tuple of (html_content, plain_text_content)
    """
    paid_on = datetime.now().strftime("%d/%m/%Y")
    rows = [
        ("Amount Paid:", f"{currency} {amount:.2f}"),
        ("Payment ID:", payment_id),
        ("Order ID:", order_id),
        ("Date:", paid_on),
    ]
    if course_title:
        rows.insert(0, ("Course:", course_title))

    content = PAYMENT_RECEIPT_CONTENT.format(
        user_name=escape(user_name),
        details=_details("Payment Details:", rows),
    )
    html = BASE_TEMPLATE.format(
        title="Payment Successful",
        content=content,
        action_url=dashboard_url,
        action_label="Go to Dashboard",
        year=datetime.now().year,
    )

    lines = "\n".join(f"{label} {value}" for label, value in rows)
    plain_text = f"""
Payment Successful - codeElevateX

Hi {user_name},

Your payment was received successfully. Thank you for your purchase!

{lines}

Go to your dashboard: {dashboard_url}
"""
    return html, plain_text.strip()


# ==============================================================================
# Template: Course Welcome
# ==============================================================================

COURSE_WELCOME_CONTENT = """
<p style="font-size: 16px; color: #333333; line-height: 1.6;">Hi <strong>{user_name}</strong>,</p>
<p style="font-size: 16px; color: #333333; line-height: 1.6;">
  Congratulations! You have successfully enrolled in <strong>{course_title}</strong>.
  Start your learning journey now!
</p>
{details}
"""


def render_course_welcome(
    user_name: str,
    course_title: str,
    total_lessons: int,
    course_url: str,
) -> tuple[str, str]:
    """Render the welcome email sent once an enrollment exists."""
    rows = [("Course Name:", course_title), ("Total Lessons:", str(total_lessons))]
    content = COURSE_WELCOME_CONTENT.format(
        user_name=escape(user_name),
        course_title=escape(course_title),
        details=_details("Course Details:", rows),
    )
    html = BASE_TEMPLATE.format(
        title=f"Welcome to {escape(course_title)}",
        content=content,
        action_url=course_url,
        action_label="Start Learning Now",
        year=datetime.now().year,
    )

    plain_text = f"""
Welcome to {course_title} - codeElevateX

Hi {user_name},

Congratulations! You have successfully enrolled in {course_title}.
The course has {total_lessons} lesson(s).

Start learning: {course_url}
"""
    return html, plain_text.strip()
