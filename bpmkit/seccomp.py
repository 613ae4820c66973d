"""Default seccomp profile and privileged capability set for containers."""

from __future__ import annotations

from .oci import (
    ACT_ALLOW,
    ACT_ERRNO,
    ARCH_X32,
    ARCH_X86,
    ARCH_X86_64,
    OP_EQUAL_TO,
    OP_MASKED_EQUAL,
    LinuxSeccomp,
    LinuxSeccompArg,
    LinuxSyscall,
)

_PRIVILEGED_CAPABILITIES = (
    "CAP_AUDIT_CONTROL",
    "CAP_AUDIT_READ",
    "CAP_AUDIT_WRITE",
    "CAP_BLOCK_SUSPEND",
    "CAP_CHOWN",
    "CAP_DAC_OVERRIDE",
    "CAP_DAC_READ_SEARCH",
    "CAP_FOWNER",
    "CAP_FSETID",
    "CAP_IPC_LOCK",
    "CAP_IPC_OWNER",
    "CAP_KILL",
    "CAP_LEASE",
    "CAP_LINUX_IMMUTABLE",
    "CAP_MAC_ADMIN",
    "CAP_MAC_OVERRIDE",
    "CAP_MKNOD",
    "CAP_NET_ADMIN",
    "CAP_NET_BIND_SERVICE",
    "CAP_NET_BROADCAST",
    "CAP_NET_RAW",
    "CAP_SETFCAP",
    "CAP_SETGID",
    "CAP_SETPCAP",
    "CAP_SETUID",
    "CAP_SYSLOG",
    "CAP_SYS_ADMIN",
    "CAP_SYS_BOOT",
    "CAP_SYS_CHROOT",
    "CAP_SYS_MODULE",
    "CAP_SYS_NICE",
    "CAP_SYS_PACCT",
    "CAP_SYS_PTRACE",
    "CAP_SYS_RAWIO",
    "CAP_SYS_RESOURCE",
    "CAP_SYS_TIME",
    "CAP_SYS_TTY_CONFIG",
    "CAP_WAKE_ALARM",
)

_ALLOWED_SYSCALLS = """
_llseek _newselect accept accept4 access alarm arch_prctl bind brk capget
capset chdir chmod chown chown32 chroot clock_getres clock_gettime
clock_nanosleep clone close connect copy_file_range creat dup dup2 dup3
epoll_create epoll_create1 epoll_ctl epoll_ctl_old epoll_pwait epoll_wait
epoll_wait_old eventfd eventfd2 execve execveat exit exit_group faccessat
fadvise64 fadvise64_64 fallocate fanotify_mark fchdir fchmod fchmodat fchown
fchown32 fchownat fcntl fcntl64 fdatasync fgetxattr flistxattr flock fork
fremovexattr fsetxattr fstat fstat64 fstatat64 fstatfs fstatfs64 fsync
ftruncate ftruncate64 futex futimesat get_robust_list get_thread_area getcpu
getcwd getdents getdents64 getegid getegid32 geteuid geteuid32 getgid
getgid32 getgroups getgroups32 getitimer getpeername getpgid getpgrp getpid
getppid getpriority getrandom getresgid getresgid32 getresuid getresuid32
getrlimit getrusage getsid getsockname getsockopt gettid gettimeofday getuid
getuid32 getxattr inotify_add_watch inotify_init inotify_init1
inotify_rm_watch io_cancel io_destroy io_getevents io_setup io_submit ioctl
ioprio_get ioprio_set ipc kill lchown lchown32 lgetxattr link linkat listen
listxattr llistxattr lremovexattr lseek lsetxattr lstat lstat64 madvise
memfd_create mincore mkdir mkdirat mknod mknodat mlock mlock2 mlockall mmap
mmap2 modify_ldt mprotect mq_getsetattr mq_notify mq_open mq_timedreceive
mq_timedsend mq_unlink mremap msgctl msgget msgrcv msgsnd msync munlock
munlockall munmap nanosleep newfstatat open openat pause personality pipe
pipe2 poll ppoll prctl pread64 preadv prlimit64 pselect6 pwrite64 pwritev
read readahead readlink readlinkat readv recv recvfrom recvmmsg recvmsg
remap_file_pages removexattr rename renameat renameat2 restart_syscall rmdir
rt_sigaction rt_sigpending rt_sigprocmask rt_sigqueueinfo rt_sigreturn
rt_sigsuspend rt_sigtimedwait rt_tgsigqueueinfo sched_get_priority_max
sched_get_priority_min sched_getaffinity sched_getattr sched_getparam
sched_getscheduler sched_rr_get_interval sched_setaffinity sched_setattr
sched_setparam sched_setscheduler sched_yield seccomp select semctl semget
semop semtimedop send sendfile sendfile64 sendmmsg sendmsg sendto
set_robust_list set_thread_area set_tid_address setfsgid setfsgid32 setfsuid
setfsuid32 setgid setgid32 setgroups setgroups32 setitimer setpgid
setpriority setregid setregid32 setresgid setresgid32 setresuid setresuid32
setreuid setreuid32 setrlimit setsid setsockopt setuid setuid32 setxattr
shmat shmctl shmdt shmget shutdown sigaltstack signalfd signalfd4 sigreturn
socket socketcall socketpair splice stat stat64 statfs statfs64 symlink
symlinkat sync sync_file_range syncfs sysinfo syslog tee tgkill time
timer_create timer_delete timer_getoverrun timer_gettime timer_settime
timerfd_create timerfd_gettime timerfd_settime times tkill truncate
truncate64 ugetrlimit umask uname unlink unlinkat utime utimensat utimes
vfork vmsplice wait4 waitid waitpid write writev
""".split()


def _conditions() -> dict[str, list[LinuxSeccompArg]]:
    # System calls allowed only for specific argument values; each condition
    # becomes its own rule.
    return {
        "clone": [LinuxSeccompArg(index=0, value=2080505856, op=OP_MASKED_EQUAL)],
        "personality": [
            LinuxSeccompArg(index=0, value=0, op=OP_EQUAL_TO),
            LinuxSeccompArg(index=0, value=4294967295, op=OP_EQUAL_TO),
            LinuxSeccompArg(index=0, value=8, op=OP_EQUAL_TO),
        ],
    }


def allow_syscall(name: str, *args: LinuxSeccompArg) -> LinuxSyscall:
    """Return a rule allowing the named system call under the given conditions."""
    return LinuxSyscall(names=[name], action=ACT_ALLOW, args=list(args))


def default_seccomp() -> LinuxSeccomp:
    """Return the default seccomp profile: deny by errno, allow a fixed list."""
    conditions = _conditions()
    syscalls: list[LinuxSyscall] = []
    for name in _ALLOWED_SYSCALLS:
        if name in conditions:
            syscalls.extend(allow_syscall(name, arg) for arg in conditions[name])
        else:
            syscalls.append(allow_syscall(name))
    return LinuxSeccomp(
        default_action=ACT_ERRNO,
        architectures=[ARCH_X86_64, ARCH_X86, ARCH_X32],
        syscalls=syscalls,
    )


def default_privileged_capabilities() -> list[str]:
    """Return the capabilities granted to privileged containers."""
    return list(_PRIVILEGED_CAPABILITIES)