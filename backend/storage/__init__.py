from .attachments import AttachmentRetriever, build_s3_client, extract_key

__all__ = ['AttachmentRetriever', 'build_s3_client', 'extract_key']
