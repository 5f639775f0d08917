"""
Welcome email templates (HTML and plain text).
"""
from html import escape

from config import Settings


def build_unsubscribe_url(settings: Settings, unsubscribe_token: str) -> str:
    """Link the welcome email uses for one-click unsubscribe."""
    return f"{settings.frontend_url.rstrip('/')}/unsubscribe?token={unsubscribe_token}"


def render_welcome_html(email: str, unsubscribe_url: str, brand: str) -> str:
    safe_email = escape(email)
    safe_brand = escape(brand)
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="UTF-8">
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <title>Welcome to {safe_brand}!</title>
        <style>
            body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; margin: 0; padding: 0; background: #f9fafb; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
            .header {{ background: linear-gradient(135deg, #16a34a 0%, #15803d 100%); padding: 40px 30px; text-align: center; border-radius: 12px 12px 0 0; }}
            .header h1 {{ color: #ffffff; margin: 0; font-size: 30px; }}
            .content {{ background: #ffffff; padding: 30px; }}
            .benefit {{ padding: 15px; background: #f0fdf4; border-left: 4px solid #16a34a; border-radius: 4px; margin-bottom: 10px; }}
            .benefit strong {{ color: #15803d; }}
            .footer {{ background: #f9fafb; padding: 25px; text-align: center; border-radius: 0 0 12px 12px; }}
            .footer p {{ color: #666; font-size: 13px; margin: 5px 0; }}
            .footer a {{ color: #16a34a; text-decoration: none; font-weight: 500; }}
        </style>
    </head>
    <body>
        <div class="container">
            <div class="header">
                <h1>Welcome to {safe_brand}!</h1>
            </div>
            <div class="content">
                <p>Hi there!</p>
                <p>Thanks for subscribing to our newsletter. You'll be the first to hear about:</p>

                <div class="benefit"><strong>Early access</strong><br>Try new features before the official launch.</div>
                <div class="benefit"><strong>News and updates</strong><br>The latest improvements and exclusive content.</div>
                <div class="benefit"><strong>Special offers</strong><br>Discounts reserved for newsletter subscribers.</div>

                <p>We're working hard to build the best experience possible. You'll hear from us soon!</p>
                <p><strong>The {safe_brand} team</strong></p>
            </div>
            <div class="footer">
                <p>You received this email because <strong>{safe_email}</strong> subscribed to the {safe_brand} newsletter.</p>
                <p><a href="{escape(unsubscribe_url, quote=True)}">Unsubscribe from the newsletter</a></p>
            </div>
        </div>
    </body>
    </html>
    """.strip()


def render_welcome_text(email: str, unsubscribe_url: str, brand: str) -> str:
    return f"""
Welcome to {brand}!

Hi there!

Thanks for subscribing to our newsletter. You'll be the first to hear about:

- Early access: try new features before the official launch.
- News and updates: the latest improvements and exclusive content.
- Special offers: discounts reserved for newsletter subscribers.

We're working hard to build the best experience possible. You'll hear from us soon!

The {brand} team

---
You received this email because {email} subscribed to the {brand} newsletter.

Unsubscribe: {unsubscribe_url}
    """.strip()
