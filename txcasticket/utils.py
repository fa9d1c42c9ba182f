# Standard library
import inspect

# External modules.
import treq
from twisted.python import log

def http_status_filter(response, allowed, ex, msg=None, include_resp_text=True):
    """
    Checks the response status and determines if it is in one of the
    allowed ranges.  If not, it raises `ex()`.

    `ex` is a callable that results in an Exception to be raised,
        (typically an exception class).
    `allowed` is a sequence of (start, end) valid status ranges.
    """
    code = response.code
    in_range = False
    for start_range, end_range in allowed:
        if code >= start_range and code <= end_range:
            in_range = True
            break
    if not in_range:
        def raise_error(body, ex):
            ex_msg = []
            if msg is not None:
                ex_msg.append(msg)
            if include_resp_text:
                if isinstance(body, bytes):
                    body = body.decode('utf-8', 'replace')
                ex_msg.append(body)
            text = '\n'.join(ex_msg)
            if text != "":
                raise ex(text)
            else:
                raise ex()
        # Need to still deliver the response body or Twisted may
        # hang.
        d = treq.content(response)
        d.addCallback(raise_error, ex)
        return d
    return response

def get_missing_args(func, provided, exclude=None):
    """
    List the required arguments of `func` that are missing from `provided`.
    """
    if exclude is None:
        exclude = set([])
    argspec = inspect.getfullargspec(func)
    defaults = argspec.defaults or []
    defaults_count = len(defaults)
    if defaults_count > 0:
        required = argspec.args[:-defaults_count]
    else:
        required = argspec.args
    missing = [arg for arg in required if not arg in provided and arg not in exclude]
    return missing

def filter_args(func, provided, exclude=None):
    """
    Removes keys from mapping `provided` that are not included in the
    arglist for `func`.
    """
    if exclude is None:
        exclude = set([])
    arg_set = set([x for x in inspect.getfullargspec(func).args if x not in exclude])
    keys = list(provided.keys())
    for k in keys:
        if not k in arg_set:
            del provided[k]

def parse_argstring(argstring):
    """
    Parse a plugin argument string of colon-separated key=value pairs.
    """
    if argstring.strip() == "":
        return {}
    return dict(x.split('=', 1) for x in argstring.split(':'))

def format_plugin_help_list(factories, stm):
     """
     Show plugin list with brief usage..
     """
     # Figure out the right width for our columns
     firstLength = 0
     for factory in factories:
         if len(factory.tag) > firstLength:
             firstLength = len(factory.tag)
     formatString = '  %%-%is\t%%s\n' % firstLength
     stm.write(formatString % ('Plugin', 'ArgString format'))
     stm.write(formatString % ('======', '================'))
     for factory in factories:
         stm.write(
             formatString % (factory.tag, factory.opt_usage))
     stm.write('\n')

def log_cas_event(label, attribs):
    """
    Log a CAS event.
    """
    parts = []
    for k, v in attribs:
        parts.append('''%s="%s"''' % (k, v))
    tail = ' '.join(parts)
    log.msg('''[INFO][CAS] label="%s" %s''' % (label, tail))

def log_http_event(request, redact_args=None):
    """
    """
    args = {}
    for k, values in request.args.items():
        if isinstance(k, bytes):
            k = k.decode('utf-8', 'replace')
        args[k] = [
            v.decode('utf-8', 'replace') if isinstance(v, bytes) else v
            for v in values]
    if redact_args is not None:
        for arg in redact_args:
            if arg in args:
                args[arg] = ['*******']
    path = request.path
    if isinstance(path, bytes):
        path = path.decode('utf-8', 'replace')
    method = request.method
    if isinstance(method, bytes):
        method = method.decode('ascii', 'replace')
    msg = '''[INFO][HTTP] method="%(method)s" path="%(path)s" args="%(args)s"''' % {
        'path': path,
        'method': method,
        'args': args,
        }
    log.msg(msg)
