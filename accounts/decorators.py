from functools import wraps

from django.http import JsonResponse


def role_required(*roles):
    """JSON-API counterpart of login_required that also checks CustomUser.role."""
    def decorator(view_func):
        @wraps(view_func)
        def wrapped(request, *args, **kwargs):
            if not request.user.is_authenticated:
                return JsonResponse({'error': 'unauthorized', 'message': 'Authentication required'}, status=401)
            if request.user.role not in roles:
                return JsonResponse({'error': 'forbidden', 'message': 'You do not have access to this resource'}, status=403)
            return view_func(request, *args, **kwargs)
        return wrapped
    return decorator


student_required = role_required('student')
