from .mailer import LogMailer, MailError, Mailer, SmtpMailer, build_mailer

__all__ = ["LogMailer", "MailError", "Mailer", "SmtpMailer", "build_mailer"]
